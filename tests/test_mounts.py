"""Tests for fstab and live mount handling."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from hostctl.commands import CommandRunner, ExternalToolFailure
from hostctl.mounts import MountManager


def _manager(tmp_path: Path, fake_runner: Any) -> MountManager:
    return MountManager(
        runner=CommandRunner(runner=fake_runner),
        fstab=tmp_path / "fstab",
        proc_mounts=tmp_path / "mounts",
    )


def test_add_mount_entry_skips_duplicates(tmp_path: Path, fake_runner: Any) -> None:
    """Whitespace differences do not create a second entry."""
    manager = _manager(tmp_path, fake_runner)
    (tmp_path / "fstab").write_text("proc /proc proc defaults 0 0\n")

    manager.add_mount_entry("/var/log/a /srv/a/logs none bind")
    manager.add_mount_entry("/var/log/a   /srv/a/logs\tnone bind")

    assert (tmp_path / "fstab").read_text() == (
        "proc /proc proc defaults 0 0\n/var/log/a /srv/a/logs none bind\n"
    )


def test_remove_mount_entry_returns_count(tmp_path: Path, fake_runner: Any) -> None:
    manager = _manager(tmp_path, fake_runner)
    (tmp_path / "fstab").write_text("a /x none bind\nb /y none bind\n")

    assert manager.remove_mount_entry(r"a .*") == 1
    assert manager.remove_mount_entry(r"zzz .*") == 0
    assert (tmp_path / "fstab").read_text() == "b /y none bind\n"


def test_mounts_unescapes_octal_fields(tmp_path: Path, fake_runner: Any) -> None:
    """Spaces in mount points are encoded as ``\\040`` in the mount table."""
    manager = _manager(tmp_path, fake_runner)
    (tmp_path / "mounts").write_text(
        "/dev/sda1 / ext4 rw 0 0\n/src /srv/my\\040site/logs/ none rw,bind 0 0\n"
    )

    assert manager.mounts() == ["/", "/srv/my site/logs"]
    assert manager.is_mountpoint(Path("/srv/my site/logs")) is True
    assert manager.is_mountpoint(Path("/srv/other")) is False


def test_mount_bind_persists_and_mounts(tmp_path: Path, fake_runner: Any) -> None:
    """A bind mount writes fstab, creates the target and calls mount once."""
    manager = _manager(tmp_path, fake_runner)
    source = tmp_path / "log" / "example.test"
    target = tmp_path / "www" / "example.test" / "logs"

    manager.mount_bind(source, target)

    assert target.is_dir()
    assert f"{source} {target} none bind" in (tmp_path / "fstab").read_text()
    assert fake_runner.commands("mount") == [
        ["mount", "-o", "bind", str(source), str(target)]
    ]


def test_mount_bind_skips_live_mount(tmp_path: Path, fake_runner: Any) -> None:
    manager = _manager(tmp_path, fake_runner)
    target = tmp_path / "logs"
    (tmp_path / "mounts").write_text(f"/src {target} none rw,bind 0 0\n")

    manager.mount_bind(tmp_path / "src", target)

    assert fake_runner.commands("mount") == []


def test_unmount_bind_removes_nested_entries(tmp_path: Path, fake_runner: Any) -> None:
    """Entries at or below the target go away; siblings with a shared prefix stay."""
    manager = _manager(tmp_path, fake_runner)
    (tmp_path / "fstab").write_text(
        "/l/a /w/a/logs none bind\n"
        "/l/b /w/a/logs/sub none bind\n"
        "/l/c /w/a/logs2 none bind\n"
    )
    (tmp_path / "mounts").write_text(
        "/l/a /w/a/logs none rw 0 0\n/l/b /w/a/logs/sub none rw 0 0\n"
    )

    manager.unmount_bind(Path("/w/a/logs"))

    assert (tmp_path / "fstab").read_text() == "/l/c /w/a/logs2 none bind\n"
    assert fake_runner.commands("umount") == [
        ["umount", "-l", "/w/a/logs/sub"],
        ["umount", "-l", "/w/a/logs"],
    ]


def test_umount_tolerates_not_mounted(tmp_path: Path, fake_runner: Any) -> None:
    manager = _manager(tmp_path, fake_runner)
    (tmp_path / "mounts").write_text("/l/a /w/a none rw 0 0\n")
    fake_runner.fail("umount -l /w/a", returncode=32, stderr="umount: /w/a: not mounted.")

    manager.umount(Path("/w/a"))


def test_umount_raises_on_other_failures(tmp_path: Path, fake_runner: Any) -> None:
    manager = _manager(tmp_path, fake_runner)
    (tmp_path / "mounts").write_text("/l/a /w/a none rw 0 0\n")
    fake_runner.fail("umount -l /w/a", returncode=32, stderr="umount: /w/a: target is busy.")

    with pytest.raises(ExternalToolFailure, match="target is busy"):
        manager.umount(Path("/w/a"))
