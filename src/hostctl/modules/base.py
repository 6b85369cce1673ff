"""Lifecycle driver shared by every entity module.

A module loads one entity row, dispatches on its status to ``add``,
``disable`` or ``delete`` and persists exactly one outcome: the new status,
the error message, or the removal of the row.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from ..config import AppConfig
from ..errors import HostctlError
from ..logging import StructuredLogger
from ..store import EntityStore

UNKNOWN_ERROR = "Unknown error"

_ADD_STATUSES = frozenset({"toadd", "tochange", "toenable"})


@dataclass(slots=True)
class ProcessResult:
    """Outcome of :meth:`Module.process` for one entity."""

    module: str
    entity_id: object
    action: str
    status: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True when the operation succeeded."""
        return self.error is None


class Module:
    """Base class for the entity modules.

    Subclasses name their table and implement :meth:`build_data` plus the
    three operations. Operation failures (:class:`HostctlError` and
    :class:`OSError`) are turned into the entity's status text; only a
    missing row or a failed status write escape :meth:`process`.
    """

    name: ClassVar[str] = ""
    label: ClassVar[str] = "entity"
    table: ClassVar[str] = ""
    pk: ClassVar[str] = "id"
    status_column: ClassVar[str] = "status"

    def __init__(self, store: EntityStore, config: AppConfig, logger: StructuredLogger) -> None:
        self.store = store
        self.config = config
        self.logger = logger

    def load(self, entity_id: object) -> dict[str, Any]:
        """Return the row of *entity_id*, raising ``DataNotFound`` when absent."""
        return self.store.load(self.table, self.pk, entity_id)

    def pending_ids(self) -> list[Any]:
        """Return the ids of rows waiting for this module."""
        return self.store.pending_ids(self.table, self.pk, self.status_column)

    def build_data(self, row: dict[str, Any]) -> Any:
        """Turn *row* into the typed record handed to the providers."""
        raise NotImplementedError

    def add(self, data: Any) -> None:
        raise NotImplementedError

    def disable(self, data: Any) -> None:
        raise NotImplementedError

    def delete(self, data: Any) -> None:
        raise NotImplementedError

    def process(self, entity_id: object) -> ProcessResult:
        """Apply the pending change of one entity and record the outcome."""
        row = self.load(entity_id)
        status = str(row.get(self.status_column) or "")

        if status in _ADD_STATUSES:
            action, done_status = "add", "ok"
        elif status == "todisable":
            action, done_status = "disable", "disabled"
        elif status == "todelete":
            action, done_status = "delete", "deleted"
        else:
            self.logger.warning(
                f"Unknown action ({status}) for {self.label} (ID {entity_id}).",
                module=self.name,
            )
            return ProcessResult(self.name, entity_id, "none", status)

        with self.logger.operation(
            f"{self.name} {action}", target={"table": self.table, "id": entity_id}
        ) as op:
            error = self._run(action, row)
            if error is None:
                if action == "delete":
                    self.store.delete(self.table, self.pk, entity_id)
                else:
                    self.store.update_status(
                        self.table, self.status_column, self.pk, entity_id, done_status
                    )
                op.success(f"{self.label} {entity_id} {action} completed.")
                return ProcessResult(self.name, entity_id, action, done_status)

            self.store.update_status(self.table, self.status_column, self.pk, entity_id, error)
            op.error(error)
            return ProcessResult(self.name, entity_id, action, error, error)

    def _run(self, action: str, row: dict[str, Any]) -> str | None:
        try:
            data = self.build_data(row)
            getattr(self, action)(data)
        except (HostctlError, OSError) as exc:
            message = str(exc).strip() or UNKNOWN_ERROR
            self.logger.error(message, module=self.name, action=action)
            return message
        return None


__all__ = ["Module", "ProcessResult", "UNKNOWN_ERROR"]
