"""Tests for the entity modules and their lifecycle driver."""
from __future__ import annotations

import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from hostctl.engine import Engine
from hostctl.errors import HostctlError
from hostctl.modules.base import UNKNOWN_ERROR
from hostctl.modules.htaccess import split_ids
from hostctl.store import DataNotFound, StoreWriteFailure

Insert = Callable[..., int]

ZONE = "@ IN SOA ns1.example.test. hostmaster.example.test. ( 2024010100 3600 900 604800 300 )\n"


@pytest.fixture
def domain_id(insert_row: Insert) -> int:
    return insert_row(
        "domain",
        domain_admin_id=1,
        domain_name="example.test",
        domain_ip="192.0.2.10",
        domain_status="ok",
    )


def _status(engine: Engine, table: str, pk: str, entity_id: object, column: str = "status") -> Any:
    return engine.store.load(table, pk, entity_id)[column]


def test_domain_build_data(engine: Engine, insert_row: Insert) -> None:
    """Rows map onto the customer's system user and web folder."""
    entity_id = insert_row(
        "domain",
        domain_admin_id=3,
        domain_name="example.test",
        domain_ip="192.0.2.10",
        ssl_support="yes",
        php_support="no",
        url_forward="https://example.org/",
        type_forward="301",
    )
    module = engine.module("domain")

    data = module.build_data(module.load(entity_id))

    assert data.user == "vu2003"
    assert data.group == "vu2003"
    assert data.web_dir == engine.config.system.user_web_dir / "example.test"
    assert data.ssl_support is True
    assert data.php_support is False
    assert data.forward == "https://example.org/"
    assert data.forward_type == "301"
    assert data.is_forwarded is True


@pytest.mark.usefixtures("local_owner")
def test_domain_add_sets_ok(engine: Engine, insert_row: Insert) -> None:
    entity_id = insert_row(
        "domain", domain_admin_id=1, domain_name="example.test", domain_ip="192.0.2.10"
    )

    result = engine.process("domain", entity_id)

    assert result.ok
    assert (result.action, result.status) == ("add", "ok")
    assert _status(engine, "domain", "domain_id", entity_id, "domain_status") == "ok"
    assert (engine.config.httpd.sites_available_dir / "example.test.conf").is_file()


@pytest.mark.usefixtures("local_owner")
def test_domain_failure_is_recorded(
    engine: Engine, insert_row: Insert, fake_runner: Any
) -> None:
    """A failing step stores its message as the entity status."""
    fake_runner.fail("a2ensite", stderr="ERROR: Site example.test does not exist!")
    entity_id = insert_row(
        "domain", domain_admin_id=1, domain_name="example.test", domain_ip="192.0.2.10"
    )

    result = engine.process("domain", entity_id)

    assert not result.ok
    status = _status(engine, "domain", "domain_id", entity_id, "domain_status")
    assert "does not exist" in status
    assert result.status == status == result.error


def test_empty_error_message(
    engine: Engine, domain_id: int, monkeypatch: pytest.MonkeyPatch
) -> None:
    module = engine.module("domain")
    engine.store.update_status("domain", "domain_status", "domain_id", domain_id, "tochange")

    def fail(data: object) -> None:
        raise HostctlError("")

    monkeypatch.setattr(module, "add", fail)

    assert module.process(domain_id).status == UNKNOWN_ERROR
    assert _status(engine, "domain", "domain_id", domain_id, "domain_status") == UNKNOWN_ERROR


@pytest.mark.usefixtures("local_owner")
def test_domain_disable_and_delete(engine: Engine, domain_id: int) -> None:
    engine.store.update_status("domain", "domain_status", "domain_id", domain_id, "todisable")

    result = engine.process("domain", domain_id)

    assert result.status == "disabled"
    assert _status(engine, "domain", "domain_id", domain_id, "domain_status") == "disabled"

    engine.store.update_status("domain", "domain_status", "domain_id", domain_id, "todelete")
    result = engine.process("domain", domain_id)

    assert (result.action, result.status) == ("delete", "deleted")
    assert engine.store.query("SELECT * FROM domain") == []


def test_unknown_status_is_left_alone(engine: Engine, domain_id: int, fake_runner: Any) -> None:
    result = engine.process("domain", domain_id)

    assert (result.action, result.status) == ("none", "ok")
    assert result.ok
    assert fake_runner.calls == []
    assert _status(engine, "domain", "domain_id", domain_id, "domain_status") == "ok"


def test_missing_entity_raises(engine: Engine) -> None:
    with pytest.raises(DataNotFound):
        engine.process("domain", 42)


def test_subdomain_build_data(engine: Engine, domain_id: int, insert_row: Insert) -> None:
    """Subdomains inherit the parent's owner, address and CGI/PHP flags."""
    engine.store.execute("UPDATE domain SET cgi_support = 'yes' WHERE domain_id = ?", (domain_id,))
    first = insert_row(
        "subdomain", domain_id=domain_id, subdomain_name="shop", subdomain_mount="/shop/"
    )
    second = insert_row(
        "subdomain",
        domain_id=domain_id,
        subdomain_name="api",
        subdomain_mount="/shop/api",
        subdomain_ip="2001:db8::10",
    )
    module = engine.module("subdomain")

    shop = module.build_data(module.load(first))
    api = module.build_data(module.load(second))

    home = engine.config.system.user_web_dir / "example.test"
    assert shop.domain_name == "shop.example.test"
    assert shop.subdomain_label == "shop"
    assert shop.mount_point == "/shop"
    assert shop.web_dir == home / "shop"
    assert shop.domain_ip == "192.0.2.10"
    assert shop.cgi_support is True
    assert shop.shared_mount_point is True
    assert api.domain_ip == "2001:db8::10"
    assert api.web_dir == home / "shop" / "api"
    assert api.shared_mount_point is False


@pytest.mark.usefixtures("local_owner")
def test_subdomain_add_and_delete(engine: Engine, domain_id: int, insert_row: Insert) -> None:
    """Subdomains touch both the Apache vhosts and the parent zone."""
    zone = engine.named.zone_path("example.test")
    zone.parent.mkdir(parents=True)
    zone.write_text(ZONE)
    entity_id = insert_row(
        "subdomain", domain_id=domain_id, subdomain_name="shop", subdomain_mount="/shop"
    )

    assert engine.process("subdomain", entity_id).status == "ok"
    assert "; sub [shop] entry BEGIN." in zone.read_text()
    assert (engine.config.httpd.sites_available_dir / "shop.example.test.conf").is_file()

    engine.store.update_status(
        "subdomain", "subdomain_status", "subdomain_id", entity_id, "todelete"
    )
    assert engine.process("subdomain", entity_id).status == "deleted"
    assert "[shop]" not in zone.read_text()
    assert not (engine.config.httpd.sites_available_dir / "shop.example.test.conf").exists()


@pytest.mark.usefixtures("local_owner")
def test_subdomain_without_zone_reports_error(
    engine: Engine, domain_id: int, insert_row: Insert
) -> None:
    entity_id = insert_row(
        "subdomain", domain_id=domain_id, subdomain_name="shop", subdomain_mount="/shop"
    )

    result = engine.process("subdomain", entity_id)

    assert result.error is not None
    assert "Zone file" in result.error


@pytest.mark.usefixtures("local_owner")
def test_ftp_user_lifecycle(engine: Engine, insert_row: Insert, tmp_path: Path) -> None:
    """Text primary keys work like the numeric ones."""
    insert_row(
        "ftp_users",
        userid="alice@example.test",
        admin_id=1,
        passwd="$6$salt$hash",
        homedir=str(tmp_path / "www" / "example.test"),
    )

    assert engine.process("ftp_user", "alice@example.test").status == "ok"
    conf = engine.ftpd.user_conf_path("alice@example.test")
    assert conf.is_file()

    engine.store.update_status("ftp_users", "status", "userid", "alice@example.test", "todelete")
    assert engine.process("ftp_user", "alice@example.test").status == "deleted"
    assert not conf.exists()


def test_catchall_pending_ignores_mailboxes(engine: Engine, insert_row: Insert) -> None:
    insert_row(
        "mail_users", mail_acc="info", domain_id=1, mail_type="normal_mail", mail_addr="info@x.test"
    )
    catchall = insert_row(
        "mail_users",
        mail_acc="a@example.org, b@example.org",
        domain_id=1,
        mail_type="normal_catchall",
        mail_addr="@x.test",
    )
    insert_row(
        "mail_users",
        mail_acc="c@example.org",
        domain_id=1,
        mail_type="subdom_catchall",
        mail_addr="@sub.x.test",
        status="ok",
    )

    assert engine.module("mail_catchall").pending_ids() == [catchall]

    result = engine.process("mail_catchall", catchall)

    assert result.status == "ok"
    assert engine.config.mta.virtual_alias_map.read_text() == "@x.test a@example.org,b@example.org\n"


def test_catchall_module_refuses_mailboxes(engine: Engine, insert_row: Insert) -> None:
    mailbox = insert_row(
        "mail_users", mail_acc="info", domain_id=1, mail_type="normal_mail", mail_addr="info@x.test"
    )

    result = engine.process("mail_catchall", mailbox)

    assert result.error == f"Mail account {mailbox} is not a catch-all (normal_mail)."


def test_split_ids() -> None:
    assert split_ids(" 1, 2,,3 ") == ["1", "2", "3"]
    assert split_ids(None) == []


@pytest.mark.usefixtures("local_owner")
def test_auth_modules(engine: Engine, domain_id: int, insert_row: Insert) -> None:
    """Users, groups and protections resolve ids to names."""
    web_dir = engine.config.system.user_web_dir / "example.test"
    (web_dir / "htdocs" / "private").mkdir(parents=True)
    alice = insert_row("htaccess_users", dmn_id=domain_id, uname="alice", upass="$apr1$a")
    bob = insert_row("htaccess_users", dmn_id=domain_id, uname="bob", upass="$apr1$b")
    staff = insert_row(
        "htaccess_groups", dmn_id=domain_id, ugroup="staff", members=f"{bob},{alice}"
    )
    protection = insert_row(
        "htaccess",
        dmn_id=domain_id,
        user_id=f"{alice}",
        auth_name="Private",
        path="/htdocs/private/",
    )

    for module, entity_id in (
        ("htuser", alice),
        ("htuser", bob),
        ("htgroup", staff),
        ("htaccess", protection),
    ):
        assert engine.process(module, entity_id).status == "ok"

    assert (web_dir / ".htpasswd").read_text() == "alice:$apr1$a\nbob:$apr1$b\n"
    assert (web_dir / ".htgroup").read_text() == "staff:bob alice\n"
    assert "Require user alice\n" in (web_dir / "htdocs" / "private" / ".htaccess").read_text()

    engine.store.update_status("htaccess_users", "status", "id", bob, "todisable")
    assert engine.process("htuser", bob).status == "disabled"
    assert (web_dir / ".htpasswd").read_text() == "alice:$apr1$a\n"

    engine.store.update_status("htaccess", "status", "id", protection, "todelete")
    assert engine.process("htaccess", protection).status == "deleted"
    assert not (web_dir / "htdocs" / "private" / ".htaccess").exists()


def test_status_write_failure_escapes_process(engine: Engine, insert_row: Insert) -> None:
    """The outcome is discarded when the final status cannot be stored."""
    catchall = insert_row(
        "mail_users",
        mail_acc="a@example.org",
        domain_id=1,
        mail_type="normal_catchall",
        mail_addr="@example.test",
    )
    engine.store.connection.execute(
        "CREATE TRIGGER refuse_update BEFORE UPDATE ON mail_users "
        "BEGIN SELECT RAISE(ABORT, 'read only'); END"
    )

    with pytest.raises(StoreWriteFailure, match="read only"):
        engine.process("mail_catchall", catchall)
    assert _status(engine, "mail_users", "mail_id", catchall) == "toadd"


@pytest.mark.usefixtures("local_owner")
def test_delete_failure_keeps_row(
    engine: Engine, insert_row: Insert, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A web folder that cannot be removed leaves the row with the error."""
    entity_id = insert_row(
        "domain", domain_admin_id=1, domain_name="example.test", domain_ip="192.0.2.10"
    )
    engine.process("domain", entity_id)
    web_dir = engine.config.system.user_web_dir / "example.test"
    rmtree = shutil.rmtree

    def refuse(path: Path, *args: Any, **kwargs: Any) -> None:
        if Path(path) == web_dir:
            raise PermissionError(13, "Permission denied", str(path))
        rmtree(path, *args, **kwargs)

    monkeypatch.setattr(shutil, "rmtree", refuse)
    engine.store.update_status("domain", "domain_status", "domain_id", entity_id, "todelete")

    result = engine.process("domain", entity_id)

    assert result.action == "delete"
    assert result.error is not None
    assert "Permission denied" in result.error
    assert _status(engine, "domain", "domain_id", entity_id, "domain_status") == result.error
    assert web_dir.is_dir()


@pytest.mark.usefixtures("local_owner")
def test_htaccess_keeps_undecodable_customer_bytes(
    engine: Engine, domain_id: int, insert_row: Insert
) -> None:
    """Existing .htaccess content that is not UTF-8 survives the update."""
    private = engine.config.system.user_web_dir / "example.test" / "htdocs" / "private"
    private.mkdir(parents=True)
    (private / ".htaccess").write_bytes(b"# caf\xe9\nOptions -Indexes\n")
    alice = insert_row("htaccess_users", dmn_id=domain_id, uname="alice", upass="$apr1$a")
    protection = insert_row(
        "htaccess",
        dmn_id=domain_id,
        user_id=f"{alice}",
        auth_name="Private",
        path="/htdocs/private",
    )

    assert engine.process("htaccess", protection).status == "ok"

    content = (private / ".htaccess").read_bytes()
    assert content.endswith(b"# caf\xe9\nOptions -Indexes\n")
    assert b"Require user alice\n" in content


@pytest.mark.usefixtures("local_owner")
def test_zone_with_undecodable_bytes(engine: Engine, domain_id: int, insert_row: Insert) -> None:
    zone = engine.named.zone_path("example.test")
    zone.parent.mkdir(parents=True)
    zone.write_bytes(ZONE.encode() + b"; owner \xff\n")
    entity_id = insert_row(
        "subdomain", domain_id=domain_id, subdomain_name="shop", subdomain_mount="/shop"
    )

    assert engine.process("subdomain", entity_id).status == "ok"

    content = zone.read_bytes()
    assert b"; owner \xff\n" in content
    assert b"; sub [shop] entry BEGIN." in content
