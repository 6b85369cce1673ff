"""Structured logging for hostctl.

Two sinks live under the configured log directory:

* ``operations.jsonl`` -- one JSON record per CLI operation, produced by
  :meth:`StructuredLogger.operation` scopes (steps, result, duration).
* ``hostctl.log`` -- a human readable log fed through the standard
  :mod:`logging` module by :meth:`StructuredLogger.debug` and friends.

Logging must never break provisioning: when the directory cannot be created,
or a write fails, the logger disables its file sinks and carries on.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

_LOGGER_NAME = "hostctl"
_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def _json_safe(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return str(value)


def _format_context(context: Mapping[str, object]) -> str:
    if not context:
        return ""
    parts = [f"{key}={value}" for key, value in context.items()]
    return " [" + " ".join(parts) + "]"


@dataclass
class OperationScope:
    """Collects steps and the final result of a single operation."""

    command: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    started: float = field(default_factory=time.monotonic)

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = _json_safe(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int | None = None,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        backups: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if changed is not None:
            result["changed"] = changed
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if backups:
            result["backups"] = list(backups)
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _json_safe(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record describing this operation."""
        duration_ms = int((time.monotonic() - self.started) * 1000)
        return {
            "ts": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "op_id": self.op_id,
            "command": self.command,
            "args": _json_safe(self.args),
            "target": _json_safe(self.target),
            "steps": self.steps,
            "result": self.result or {"status": "unknown"},
            "duration_ms": duration_ms,
        }


class StructuredLogger:
    """Write operation records and human readable log lines."""

    def __init__(self, log_dir: Path, *, level: int = logging.INFO) -> None:
        """Prepare the log directory and file handlers."""
        self._log_dir = Path(log_dir)
        self._operations_log_path = self._log_dir / "operations.jsonl"
        self._human_log_path = self._log_dir / "hostctl.log"
        self._enabled = True
        self._logger = logging.getLogger(f"{_LOGGER_NAME}.{uuid.uuid4().hex[:8]}")
        self._logger.setLevel(level)
        self._logger.propagate = False
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(self._human_log_path, encoding="utf-8")
        except OSError:
            self._enabled = False
            self._logger.addHandler(logging.NullHandler())
            return
        handler.setFormatter(logging.Formatter(_FORMAT))
        self._logger.addHandler(handler)

    # Human log ---------------------------------------------------------
    def debug(self, message: str, **context: object) -> None:
        """Log a debug message."""
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context: object) -> None:
        """Log an informational message."""
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context: object) -> None:
        """Log a warning."""
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context: object) -> None:
        """Log an error."""
        self._log(logging.ERROR, message, context)

    def _log(self, level: int, message: str, context: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        self._logger.log(level, "%s%s", message, _format_context(context))

    # Operation records ---------------------------------------------------
    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist its record on exit."""
        scope = OperationScope(command=command, args=dict(args or {}), target=dict(target or {}))
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            self._write_record(scope.to_record())

    def _write_record(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
