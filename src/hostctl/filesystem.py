"""Folder, ownership and immutable-flag helpers for provisioned web trees."""
from __future__ import annotations

import grp
import os
import pwd
import shutil
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .commands import CommandRunner
from .errors import HostctlError


class FilesystemError(HostctlError):
    """Raised when a filesystem operation fails."""


@dataclass(slots=True)
class DirectorySpec:
    """Desired state for a single directory."""

    path: Path
    user: str | None = None
    group: str | None = None
    mode: int = 0o755


@dataclass(slots=True)
class DirectoryAction:
    """Single change required to satisfy a :class:`DirectorySpec`."""

    kind: Literal["mkdir", "chown", "chmod"]
    path: Path
    mode: int | None = None
    uid: int = -1
    gid: int = -1


@dataclass(slots=True)
class DirectoryPlan:
    """Ordered actions plus warnings for paths that cannot be satisfied."""

    actions: list[DirectoryAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def resolve_uid(user: str | None) -> int:
    """Return the uid for *user* (``-1`` leaves ownership untouched)."""
    if user is None:
        return -1
    try:
        return pwd.getpwnam(user).pw_uid
    except KeyError as exc:
        raise FilesystemError(f"Unknown user '{user}'.") from exc


def resolve_gid(group: str | None) -> int:
    """Return the gid for *group* (``-1`` leaves ownership untouched)."""
    if group is None:
        return -1
    try:
        return grp.getgrnam(group).gr_gid
    except KeyError as exc:
        raise FilesystemError(f"Unknown group '{group}'.") from exc


def plan_directories(specs: Iterable[DirectorySpec]) -> DirectoryPlan:
    """Compare *specs* against the disk and return the actions needed."""
    plan = DirectoryPlan()
    for spec in specs:
        path = spec.path
        uid = resolve_uid(spec.user)
        gid = resolve_gid(spec.group)
        if path.exists() and not path.is_dir():
            plan.warnings.append(f"{path} exists but is not a directory.")
            continue
        if not path.exists():
            plan.actions.append(DirectoryAction(kind="mkdir", path=path, mode=spec.mode))
            if uid != -1 or gid != -1:
                plan.actions.append(DirectoryAction(kind="chown", path=path, uid=uid, gid=gid))
            continue

        stat = path.stat()
        if (uid != -1 and stat.st_uid != uid) or (gid != -1 and stat.st_gid != gid):
            plan.actions.append(DirectoryAction(kind="chown", path=path, uid=uid, gid=gid))
        if stat.st_mode & 0o7777 != spec.mode:
            plan.actions.append(DirectoryAction(kind="chmod", path=path, mode=spec.mode))
    return plan


def apply_directory_plan(plan: DirectoryPlan) -> None:
    """Execute the actions in *plan*."""
    for action in plan.actions:
        try:
            if action.kind == "mkdir":
                action.path.mkdir(parents=True, exist_ok=True)
                if action.mode is not None:
                    os.chmod(action.path, action.mode)
            elif action.kind == "chown":
                os.chown(action.path, action.uid, action.gid)
            elif action.kind == "chmod" and action.mode is not None:
                os.chmod(action.path, action.mode)
        except OSError as exc:
            raise FilesystemError(f"Could not {action.kind} {action.path}: {exc}") from exc


def ensure_folders(specs: Iterable[DirectorySpec]) -> DirectoryPlan:
    """Create or fix every directory in *specs*; idempotent."""
    plan = plan_directories(list(specs))
    if plan.warnings:
        raise FilesystemError(" ".join(plan.warnings))
    apply_directory_plan(plan)
    return plan


def make_dir(
    path: Path,
    *,
    user: str | None = None,
    group: str | None = None,
    mode: int = 0o755,
) -> None:
    """Create *path* (and parents) with the given ownership and mode."""
    ensure_folders([DirectorySpec(path=path, user=user, group=group, mode=mode)])


def remove_dir(path: Path) -> None:
    """Remove *path* recursively; a missing path is not an error."""
    try:
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.exists():
            shutil.rmtree(path)
    except OSError as exc:
        raise FilesystemError(f"Could not remove {path}: {exc}") from exc


def remove_file(path: Path) -> None:
    """Delete the file at *path* when present."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        raise FilesystemError(f"Could not delete {path}: {exc}") from exc


def is_empty(path: Path) -> bool:
    """Return True when directory *path* has no entries."""
    try:
        with os.scandir(path) as entries:
            return next(entries, None) is None
    except OSError as exc:
        raise FilesystemError(f"Could not read {path}: {exc}") from exc


def list_entries(path: Path) -> list[str]:
    """Return the names found directly below *path*, sorted."""
    try:
        return sorted(entry.name for entry in path.iterdir())
    except OSError as exc:
        raise FilesystemError(f"Could not read {path}: {exc}") from exc


def write_file(
    path: Path,
    content: str,
    *,
    user: str | None = None,
    group: str | None = None,
    mode: int = 0o644,
) -> None:
    """Atomically write *content* to *path* and apply ownership and mode."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    except OSError as exc:
        raise FilesystemError(f"Could not write {path}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8", errors="surrogateescape") as handle:
            handle.write(content)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise FilesystemError(f"Could not write {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)
    set_rights(path, user=user, group=group, mode=mode)


def read_file(path: Path) -> str:
    """Return the text of *path*, or an empty string when it is missing.

    Bytes that are not UTF-8 are carried as surrogates so that
    :func:`write_file` puts them back unchanged.
    """
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8", errors="surrogateescape")
    except OSError as exc:
        raise FilesystemError(f"Could not read {path}: {exc}") from exc


def set_rights(
    path: Path,
    *,
    user: str | None = None,
    group: str | None = None,
    mode: int | None = None,
    dirmode: int | None = None,
    filemode: int | None = None,
    recursive: bool = False,
) -> None:
    """Apply ownership and permission bits to *path*.

    ``mode`` applies to every entry, while ``dirmode`` and ``filemode`` only
    touch directories or regular files respectively. The tree below *path* is
    walked only when *recursive* is true; symlinks are never followed.
    """
    if not path.exists() and not path.is_symlink():
        raise FilesystemError(f"Cannot set rights on missing path {path}.")
    uid = resolve_uid(user)
    gid = resolve_gid(group)

    def _apply(target: Path) -> None:
        try:
            if uid != -1 or gid != -1:
                os.chown(target, uid, gid, follow_symlinks=False)
            if target.is_symlink():
                return
            if mode is not None:
                os.chmod(target, mode)
            elif dirmode is not None and target.is_dir():
                os.chmod(target, dirmode)
            elif filemode is not None and target.is_file():
                os.chmod(target, filemode)
        except OSError as exc:
            raise FilesystemError(f"Could not set rights on {target}: {exc}") from exc

    _apply(path)
    if not recursive or path.is_symlink() or not path.is_dir():
        return
    for root, dirs, files in os.walk(path):
        for name in [*dirs, *files]:
            _apply(Path(root) / name)


@dataclass(slots=True)
class Immutable:
    """Toggle the ext2 immutable attribute with ``chattr``/``lsattr``."""

    runner: CommandRunner
    chattr_bin: str = "chattr"
    lsattr_bin: str = "lsattr"

    def set(self, path: Path) -> None:
        """Set the immutable flag on *path*."""
        if not path.exists():
            return
        self.runner.run([self.chattr_bin, "+i", str(path)])

    def clear(self, path: Path, *, recursive: bool = False) -> None:
        """Clear the immutable flag on *path* (and below when *recursive*)."""
        if not path.exists():
            return
        args = [self.chattr_bin, "-f"]
        if recursive:
            args.append("-R")
        args.extend(["-i", str(path)])
        self.runner.run(args)

    def is_set(self, path: Path) -> bool:
        """Return True when *path* carries the immutable flag."""
        if not path.exists():
            return False
        result = self.runner.run([self.lsattr_bin, "-d", str(path)], check=False)
        if result.returncode != 0:
            return False
        output = (result.stdout or "").strip()
        if not output:
            return False
        return "i" in output.split()[0]


__all__ = [
    "DirectoryAction",
    "DirectoryPlan",
    "DirectorySpec",
    "FilesystemError",
    "Immutable",
    "apply_directory_plan",
    "ensure_folders",
    "is_empty",
    "list_entries",
    "make_dir",
    "plan_directories",
    "read_file",
    "remove_dir",
    "remove_file",
    "resolve_gid",
    "resolve_uid",
    "set_rights",
    "write_file",
]
