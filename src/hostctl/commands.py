"""Execution of external tools (a2ensite, systemctl, cp, mount ...)."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .errors import HostctlError
from .logging import StructuredLogger

Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]


class ExternalToolFailure(HostctlError):
    """Raised when an external command exits non-zero or cannot be started."""

    def __init__(self, command: Sequence[str], returncode: int | None, message: str) -> None:
        """Record the failing command alongside its output."""
        self.command = list(command)
        self.returncode = returncode
        self.output = message
        if returncode is None:
            text = f"{command[0]} could not be executed: {message}"
        else:
            text = f"{' '.join(command)} failed (exit {returncode}): {message}"
        super().__init__(text)


def _default_runner(command: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(command, capture_output=True, text=True, check=False)  # noqa: S603,S607


@dataclass(slots=True)
class CommandRunner:
    """Run external commands synchronously, without a timeout.

    The *runner* callable is the only place a process is spawned which lets
    tests substitute a recorder.
    """

    logger: StructuredLogger | None = None
    runner: Runner | None = None

    def run(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute *args* and return the completed process.

        Raises :class:`ExternalToolFailure` when *check* is true and the
        command exits non-zero, or when the binary cannot be found.
        """
        command = [str(arg) for arg in args]
        runner = self.runner or _default_runner
        try:
            result = runner(command)
        except FileNotFoundError as exc:
            raise ExternalToolFailure(command, None, str(exc)) from exc

        stdout = (getattr(result, "stdout", "") or "").strip()
        stderr = (getattr(result, "stderr", "") or "").strip()
        if self.logger is not None:
            self.logger.debug(f"exec: {' '.join(command)}", rc=result.returncode)
            if stdout:
                self.logger.debug(stdout)
            if stderr and result.returncode != 0:
                self.logger.error(stderr)
        if check and result.returncode != 0:
            raise ExternalToolFailure(command, result.returncode, stderr or stdout or "no output")
        return result

    def which(self, name: str) -> str | None:
        """Return the resolved path for *name* when the tool is installed."""
        return shutil.which(name)


__all__ = ["CommandRunner", "ExternalToolFailure", "Runner"]
