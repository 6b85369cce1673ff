"""Tests for the SQLite entity store."""
from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest

from hostctl.store import DataNotFound, EntityStore, StoreError, StoreWriteFailure


@pytest.fixture
def store(tmp_path: Path) -> Iterator[EntityStore]:
    """Return a store with the schema in place."""
    instance = EntityStore(tmp_path / "db" / "panel.db")
    instance.init_schema()
    yield instance
    instance.close()


def _add_domain(store: EntityStore, name: str, status: str = "toadd") -> int:
    store.execute(
        "INSERT INTO domain (domain_admin_id, domain_name, domain_status) VALUES (?, ?, ?)",
        (1, name, status),
    )
    return int(store.query("SELECT last_insert_rowid() AS id")[0]["id"])


def test_init_schema_is_idempotent(store: EntityStore) -> None:
    store.init_schema()

    tables = {
        row["name"]
        for row in store.query("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    assert {
        "domain",
        "subdomain",
        "ftp_users",
        "mail_users",
        "htaccess_users",
        "htaccess_groups",
        "htaccess",
        "httpd_vlogger",
    } <= tables


def test_load_and_missing_rows(store: EntityStore) -> None:
    """Text ids from the command line match integer keys."""
    domain_id = _add_domain(store, "example.test")

    row = store.load("domain", "domain_id", str(domain_id))

    assert row["domain_name"] == "example.test"
    with pytest.raises(DataNotFound, match=r"domain \(ID 99\)"):
        store.load("domain", "domain_id", 99)


def test_pending_ids_only_lists_transitional_statuses(store: EntityStore) -> None:
    first = _add_domain(store, "a.test")
    _add_domain(store, "b.test", status="ok")
    third = _add_domain(store, "c.test", status="todelete")
    _add_domain(store, "d.test", status="disabled")
    fifth = _add_domain(store, "e.test", status="tochange")

    assert store.pending_ids("domain", "domain_id", "domain_status") == [first, third, fifth]


def test_update_status_and_delete(store: EntityStore) -> None:
    domain_id = _add_domain(store, "example.test")

    store.update_status("domain", "domain_status", "domain_id", domain_id, "ok")
    assert store.load("domain", "domain_id", domain_id)["domain_status"] == "ok"

    store.delete("domain", "domain_id", domain_id)
    assert store.query("SELECT * FROM domain") == []


def test_identifiers_are_validated(store: EntityStore) -> None:
    with pytest.raises(StoreError, match="Invalid SQL identifier"):
        store.load("domain; DROP TABLE domain", "domain_id", 1)


def test_write_failure_is_reported(store: EntityStore) -> None:
    """A refused update raises StoreWriteFailure and leaves the row unchanged."""
    domain_id = _add_domain(store, "example.test")
    store.connection.execute(
        "CREATE TRIGGER refuse_update BEFORE UPDATE ON domain "
        "BEGIN SELECT RAISE(ABORT, 'read only'); END"
    )

    with pytest.raises(StoreWriteFailure, match="read only"):
        store.update_status("domain", "domain_status", "domain_id", domain_id, "ok")
    assert store.load("domain", "domain_id", domain_id)["domain_status"] == "toadd"


def test_transaction_rolls_back(store: EntityStore) -> None:
    with pytest.raises(RuntimeError):
        with store.transaction() as connection:
            connection.execute(
                "INSERT INTO httpd_vlogger (vhost, ldate, bytes) VALUES ('a', '20240101', 1)"
            )
            raise RuntimeError("abort")

    assert store.query("SELECT * FROM httpd_vlogger") == []


def test_failed_commit_is_rolled_back(store: EntityStore) -> None:
    """A commit refused by a concurrent reader leaves the connection usable."""
    domain_id = _add_domain(store, "example.test")
    store.connection.execute("PRAGMA busy_timeout = 0")
    reader = sqlite3.connect(str(store.path), isolation_level=None)
    reader.execute("BEGIN")
    reader.execute("SELECT * FROM domain").fetchall()
    try:
        with pytest.raises(StoreWriteFailure, match="locked"):
            store.update_status("domain", "domain_status", "domain_id", domain_id, "ok")
    finally:
        reader.execute("ROLLBACK")
        reader.close()

    assert not store.connection.in_transaction
    assert store.load("domain", "domain_id", domain_id)["domain_status"] == "toadd"
    store.update_status("domain", "domain_status", "domain_id", domain_id, "ok")
    assert store.load("domain", "domain_id", domain_id)["domain_status"] == "ok"


def test_unopenable_database(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x")

    with pytest.raises(StoreError, match="Could not open database"):
        EntityStore(blocker / "panel.db").init_schema()
