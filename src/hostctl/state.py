"""Helpers for the YAML files hostctl keeps under its state directory.

The state directory (``/var/lib/hostctl`` by default) holds small YAML
artifacts such as the HTTP traffic database. Writes are atomic so a crash
never leaves a truncated file behind.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path

import yaml

from .errors import HostctlError


class StateRegistryError(HostctlError):
    """Raised when state file operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """Read and write YAML documents below *root*."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the state directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named state file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a state file, returning *default* when missing or empty."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse state file {path}: {exc}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise StateRegistryError(f"Failed to read state file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given state file."""
        path = self.path_for(name)
        try:
            self.ensure_root()
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        except OSError as exc:
            raise StateRegistryError(f"Failed to write state file {path}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        except OSError as exc:
            raise StateRegistryError(f"Failed to write state file {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    def delete(self, name: str) -> bool:
        """Remove a state file; return True when something was deleted."""
        path = self.path_for(name)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise StateRegistryError(f"Failed to delete state file {path}: {exc}") from exc
        return True


__all__ = ["StateRegistry", "StateRegistryError"]
