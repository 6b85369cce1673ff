"""Tests for the vsftpd provider."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from hostctl.engine import Engine
from hostctl.records import FtpUserData


@pytest.fixture
def account(tmp_path: Path, current_user: str, current_group: str) -> FtpUserData:
    return FtpUserData(
        username="alice@example.test",
        owner_id=1,
        password_crypt="$6$salt$hash",
        password_clear="secret",
        shell="/bin/sh",
        homedir=tmp_path / "www" / "example.test",
        uid=2001,
        gid=2001,
        user=current_user,
        group=current_group,
    )


def test_add_user_writes_conf_and_allows_login(engine: Engine, account: FtpUserData) -> None:
    userlist = engine.config.ftpd.userlist_file
    userlist.parent.mkdir(parents=True)
    userlist.write_text("root\nalice@example.test\n")

    engine.ftpd.add_user(account)

    conf = engine.ftpd.user_conf_path("alice@example.test")
    assert f"local_root={account.homedir}\n" in conf.read_text()
    assert f"guest_username={account.user}\n" in conf.read_text()
    assert conf.stat().st_mode & 0o777 == 0o640
    assert userlist.read_text() == "root\n"
    assert engine.ftpd.restart_pending is True


def test_disable_then_delete(engine: Engine, account: FtpUserData) -> None:
    """Disabling denies the login once; deleting clears both traces."""
    engine.ftpd.add_user(account)

    engine.ftpd.disable_user(account)
    engine.ftpd.disable_user(account)
    assert engine.config.ftpd.userlist_file.read_text() == "alice@example.test\n"

    engine.ftpd.delete_user(account)
    assert engine.config.ftpd.userlist_file.read_text() == ""
    assert not engine.ftpd.user_conf_path("alice@example.test").exists()


def test_conf_hook_can_extend_content(engine: Engine, account: FtpUserData) -> None:
    engine.hooks.register(
        "after_ftpd_build_user_conf", lambda content, data: content + "max_clients=2\n"
    )

    engine.ftpd.add_user(account)

    assert engine.ftpd.user_conf_path(account.username).read_text().endswith("max_clients=2\n")


def test_restart_if_pending(engine: Engine, account: FtpUserData, fake_runner: Any) -> None:
    assert engine.ftpd.restart_if_pending() is False

    engine.ftpd.disable_user(account)

    assert engine.ftpd.restart_if_pending() is True
    assert engine.ftpd.restart_pending is False
    assert fake_runner.commands("systemctl") == [["systemctl", "restart", "vsftpd"]]
