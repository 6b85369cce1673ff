"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import grp
import os
import pwd
import shutil
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from hostctl.config import AppConfig, load_config
from hostctl.engine import Engine
from hostctl.logging import StructuredLogger
from hostctl.records import WebDomainData


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class FakeRunner:
    """Record commands instead of spawning them.

    ``cp`` runs for real so skeleton copies land on disk, ``chattr`` and
    ``lsattr`` share an in-memory set of immutable paths, and any command
    whose joined text starts with a key of :attr:`failures` returns that
    result.
    """

    def __init__(self) -> None:
        """Start with no recorded calls."""
        self.calls: list[list[str]] = []
        self.immutable: set[str] = set()
        self.failures: dict[str, DummyResult] = {}

    def __call__(self, command: list[str]) -> DummyResult:
        """Handle one command."""
        self.calls.append(list(command))
        joined = " ".join(command)
        for prefix, result in self.failures.items():
            if joined.startswith(prefix):
                return result
        name = Path(command[0]).name
        if name == "cp":
            self._copy(command)
        elif name == "chattr":
            target = command[-1]
            if command[1] == "+i":
                self.immutable.add(target)
            else:
                self.immutable.discard(target)
        elif name == "lsattr":
            flags = "----i---------e--" if command[-1] in self.immutable else "--------------e--"
            return DummyResult(stdout=f"{flags} {command[-1]}\n")
        return DummyResult()

    def fail(self, prefix: str, returncode: int = 1, stderr: str = "") -> None:
        """Make commands starting with *prefix* exit with *returncode*."""
        self.failures[prefix] = DummyResult(returncode=returncode, stderr=stderr)

    def commands(self, name: str) -> list[list[str]]:
        """Return the recorded invocations of tool *name*."""
        return [call for call in self.calls if Path(call[0]).name == name]

    @staticmethod
    def _copy(command: list[str]) -> None:
        flags, source, target = command[1], Path(command[2]), Path(command[3])
        if "n" not in flags:
            shutil.copytree(source, target, dirs_exist_ok=True, symlinks=True)
            return
        for root, _dirs, files in os.walk(source):
            relative = Path(root).relative_to(source)
            (target / relative).mkdir(parents=True, exist_ok=True)
            for name in files:
                destination = target / relative / name
                if not destination.exists():
                    shutil.copy2(Path(root) / name, destination)


@pytest.fixture
def current_user() -> str:
    """Return the name of the user running the tests."""
    return pwd.getpwuid(os.getuid()).pw_name


@pytest.fixture
def current_group() -> str:
    """Return the primary group of the user running the tests."""
    return grp.getgrgid(os.getgid()).gr_name


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a fresh recording runner."""
    return FakeRunner()


@pytest.fixture
def app_config(tmp_path: Path, current_user: str, current_group: str) -> AppConfig:
    """Build a configuration whose every path lives below ``tmp_path``."""
    overrides: dict[str, object] = {
        "database": str(tmp_path / "state" / "hostctl.db"),
        "state_dir": str(tmp_path / "state"),
        "logs_dir": str(tmp_path / "logs"),
        "templates_dir": str(tmp_path / "templates"),
        "system": {
            "root_user": current_user,
            "root_group": current_group,
            "user_web_dir": str(tmp_path / "www"),
            "certs_dir": str(tmp_path / "certs"),
            "base_server_ip": "192.0.2.1",
            "base_server_vhost": "panel.example.test",
        },
        "httpd": {
            "version": "2.4.58",
            "user": current_user,
            "group": current_group,
            "conf_dir": str(tmp_path / "apache2"),
            "log_dir": str(tmp_path / "log" / "apache2"),
        },
        "named": {"db_dir": str(tmp_path / "bind")},
        "ftpd": {
            "user_conf_dir": str(tmp_path / "vsftpd" / "users"),
            "userlist_file": str(tmp_path / "vsftpd" / "user_list"),
        },
        "mta": {"virtual_alias_map": str(tmp_path / "postfix" / "aliases")},
        "tools": {
            "fstab": str(tmp_path / "fstab"),
            "proc_mounts": str(tmp_path / "proc_mounts"),
        },
    }
    config = load_config(config_file=tmp_path / "missing.yml", env={}, overrides=overrides)
    config.httpd.sites_available_dir.mkdir(parents=True)
    config.system.user_web_dir.mkdir(parents=True)
    return config


@pytest.fixture
def engine(app_config: AppConfig, fake_runner: FakeRunner) -> Iterator[Engine]:
    """Return an engine wired to the fake runner with an initialised database."""
    instance = Engine.from_config(
        app_config, logger=StructuredLogger(app_config.logs_dir), runner=fake_runner
    )
    instance.store.init_schema()
    yield instance
    instance.close()


@pytest.fixture
def make_domain(
    app_config: AppConfig, current_user: str, current_group: str
) -> Callable[..., WebDomainData]:
    """Return a factory for web domain records owned by the current user."""

    def _factory(name: str = "example.test", **overrides: object) -> WebDomainData:
        home_dir = app_config.system.user_web_dir / name
        values: dict[str, object] = {
            "domain_type": "dmn",
            "domain_name": name,
            "domain_ip": "192.0.2.10",
            "owner_id": 1,
            "user": current_user,
            "group": current_group,
            "home_dir": home_dir,
            "web_dir": home_dir,
            "base_server_ip": app_config.system.base_server_ip,
            "base_server_vhost": app_config.system.base_server_vhost,
        }
        values.update(overrides)
        return WebDomainData(**values)  # type: ignore[arg-type]

    return _factory


@pytest.fixture
def local_owner(
    monkeypatch: pytest.MonkeyPatch, current_user: str, current_group: str
) -> tuple[str, str]:
    """Map every panel customer onto the account running the tests."""
    for module in ("domain", "ftp_user", "htaccess"):
        monkeypatch.setattr(
            f"hostctl.modules.{module}.system_user", lambda system, owner_id: current_user
        )
        monkeypatch.setattr(
            f"hostctl.modules.{module}.system_group", lambda system, owner_id: current_group
        )
    return current_user, current_group


@pytest.fixture
def insert_row(engine: Engine) -> Callable[..., int]:
    """Return a helper inserting one row and returning its rowid."""

    def _insert(table: str, **values: object) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        engine.store.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",  # noqa: S608
            tuple(values.values()),
        )
        return int(engine.store.query("SELECT last_insert_rowid() AS id")[0]["id"])

    return _insert
