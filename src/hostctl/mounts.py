"""fstab and live mount table management for bind-mounted log folders."""
from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .commands import CommandRunner, ExternalToolFailure
from .filesystem import FilesystemError, make_dir

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


def _unescape(field: str) -> str:
    return _OCTAL_ESCAPE.sub(lambda match: chr(int(match.group(1), 8)), field)


def _canonical(path: Path | str) -> str:
    text = os.path.normpath(str(path))
    return text if text != "." else ""


@dataclass(slots=True)
class MountManager:
    """Maintain persistent entries in ``fstab`` and the live mounts they describe."""

    runner: CommandRunner
    fstab: Path = Path("/etc/fstab")
    proc_mounts: Path = Path("/proc/mounts")
    mount_bin: str = "mount"
    umount_bin: str = "umount"

    # fstab -------------------------------------------------------------
    def add_mount_entry(self, entry: str) -> None:
        """Append *entry* to fstab unless an identical line already exists."""
        wanted = " ".join(entry.split())
        lines = self._read_fstab()
        if any(" ".join(line.split()) == wanted for line in lines):
            return
        lines.append(wanted)
        self._write_fstab(lines)

    def remove_mount_entry(self, pattern: str | re.Pattern[str]) -> int:
        """Drop every fstab line fully matching *pattern*; return how many."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        lines = self._read_fstab()
        kept = [line for line in lines if not regex.fullmatch(line)]
        removed = len(lines) - len(kept)
        if removed:
            self._write_fstab(kept)
        return removed

    def _read_fstab(self) -> list[str]:
        if not self.fstab.exists():
            return []
        try:
            return self.fstab.read_text(encoding="utf-8", errors="surrogateescape").splitlines()
        except OSError as exc:
            raise FilesystemError(f"Could not read {self.fstab}: {exc}") from exc

    def _write_fstab(self, lines: list[str]) -> None:
        payload = "\n".join(lines) + ("\n" if lines else "")
        try:
            self.fstab.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(self.fstab.parent), prefix=f".{self.fstab.name}."
            )
        except OSError as exc:
            raise FilesystemError(f"Could not update {self.fstab}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8", errors="surrogateescape") as handle:
                handle.write(payload)
            os.replace(tmp_path, self.fstab)
            os.chmod(self.fstab, 0o644)
        except OSError as exc:
            raise FilesystemError(f"Could not update {self.fstab}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    # live mounts ---------------------------------------------------------
    def mounts(self) -> list[str]:
        """Return the mount points listed in the live mount table."""
        if not self.proc_mounts.exists():
            return []
        try:
            text = self.proc_mounts.read_text(encoding="utf-8", errors="surrogateescape")
        except OSError as exc:
            raise FilesystemError(f"Could not read {self.proc_mounts}: {exc}") from exc
        points = []
        for line in text.splitlines():
            fields = line.split()
            if len(fields) >= 2:
                points.append(_canonical(_unescape(fields[1])))
        return points

    def is_mountpoint(self, path: Path) -> bool:
        """Return True when *path* is currently a mount point."""
        return _canonical(path) in self.mounts()

    def mount(self, spec: Path | str, target: Path, fstype: str = "none", options: str = "") -> None:
        """Mount *spec* on *target*."""
        args = [self.mount_bin]
        if fstype and fstype != "none":
            args.extend(["-t", fstype])
        if options:
            args.extend(["-o", options])
        args.extend([str(spec), str(target)])
        self.runner.run(args)

    def umount(self, path: Path) -> None:
        """Unmount every file system at or below *path*, deepest first."""
        root = _canonical(path)
        nested = [
            point for point in self.mounts() if point == root or point.startswith(root + "/")
        ]
        for point in sorted(set(nested), key=len, reverse=True):
            result = self.runner.run([self.umount_bin, "-l", point], check=False)
            if result.returncode == 0:
                continue
            message = (result.stderr or result.stdout or "").strip()
            if "not mounted" in message.lower():
                continue
            raise ExternalToolFailure([self.umount_bin, "-l", point], result.returncode, message)

    def mount_bind(self, source: Path, target: Path) -> None:
        """Persist and activate a bind mount of *source* on *target*."""
        make_dir(target)
        self.add_mount_entry(f"{_canonical(source)} {_canonical(target)} none bind")
        if not self.is_mountpoint(target):
            self.mount(source, target, "none", "bind")

    def unmount_bind(self, target: Path) -> None:
        """Remove fstab entries at or below *target* and unmount them."""
        fs_file = re.escape(_canonical(target))
        self.remove_mount_entry(rf".*?[ \t]+{fs_file}(?:/|[ \t]+)[^\n]+")
        self.umount(target)


__all__ = ["MountManager"]
