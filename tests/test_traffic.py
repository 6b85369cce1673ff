"""Tests for HTTP traffic collection."""
from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date

import pytest
import yaml

from hostctl.engine import Engine
from hostctl.state import StateRegistry, StateRegistryError
from hostctl.traffic import TrafficError


def _log(engine: Engine, vhost: str, ldate: str, size: int) -> None:
    engine.store.execute(
        "INSERT INTO httpd_vlogger (vhost, ldate, bytes) VALUES (?, ?, ?)", (vhost, ldate, size)
    )


def test_collect_sums_rows_up_to_today(engine: Engine) -> None:
    """Rows up to the day are folded in and consumed; later rows stay."""
    _log(engine, "example.test", "20240101", 100)
    _log(engine, "example.test", "20240102", 50)
    _log(engine, "shop.example.test", "20240102", 7)
    _log(engine, "example.test", "20240103", 1)

    traffic = engine.collect_traffic(date(2024, 1, 2))

    assert traffic == {"example.test": 150, "shop.example.test": 7}
    remaining = engine.store.query("SELECT vhost, ldate FROM httpd_vlogger")
    assert remaining == [{"vhost": "example.test", "ldate": "20240103"}]
    saved = yaml.safe_load(engine.config.traffic_db.read_text())
    assert saved == traffic


def test_unacknowledged_totals_accumulate(engine: Engine) -> None:
    """A second run before acknowledgement adds to the saved totals."""
    _log(engine, "example.test", "20240101", 100)
    engine.collect_traffic(date(2024, 1, 1))
    _log(engine, "example.test", "20240102", 5)

    assert engine.collect_traffic(date(2024, 1, 2)) == {"example.test": 105}


def test_acknowledge_removes_database(engine: Engine) -> None:
    _log(engine, "example.test", "20240101", 100)
    engine.collect_traffic(date(2024, 1, 1))

    engine.acknowledge_traffic()

    assert not engine.config.traffic_db.exists()
    _log(engine, "example.test", "20240102", 3)
    assert engine.collect_traffic(date(2024, 1, 2)) == {"example.test": 3}


def test_failure_rolls_back(engine: Engine, monkeypatch: pytest.MonkeyPatch) -> None:
    """When the totals cannot be saved the source rows are kept."""
    _log(engine, "example.test", "20240101", 100)

    def refuse(self: StateRegistry, name: str, payload: object) -> None:
        raise StateRegistryError("disk full")

    monkeypatch.setattr(StateRegistry, "write", refuse)

    with pytest.raises(TrafficError, match="disk full"):
        engine.collect_traffic(date(2024, 1, 1))
    assert len(engine.store.query("SELECT * FROM httpd_vlogger")) == 1
    assert engine.hooks.callbacks("after_traffic_collected") == []


def test_corrupt_database_is_rejected(engine: Engine) -> None:
    engine.config.traffic_db.write_text("- not\n- a mapping\n")

    with pytest.raises(TrafficError, match="must be a mapping"):
        engine.collect_traffic(date(2024, 1, 1))


@contextmanager
def _reader_lock(engine: Engine) -> Iterator[None]:
    """Hold a read transaction on another connection so commits are refused."""
    engine.store.connection.execute("PRAGMA busy_timeout = 0")
    reader = sqlite3.connect(str(engine.store.path), isolation_level=None)
    reader.execute("BEGIN")
    reader.execute("SELECT * FROM httpd_vlogger").fetchall()
    try:
        yield
    finally:
        reader.execute("ROLLBACK")
        reader.close()


def test_failed_commit_keeps_rows_and_saved_totals(engine: Engine) -> None:
    """Totals are not double counted when the source rows survive a failed run."""
    _log(engine, "example.test", "20240101", 100)
    engine.collect_traffic(date(2024, 1, 1))
    _log(engine, "example.test", "20240102", 5)

    with _reader_lock(engine):
        with pytest.raises(TrafficError, match="locked"):
            engine.collect_traffic(date(2024, 1, 2))

    assert yaml.safe_load(engine.config.traffic_db.read_text()) == {"example.test": 100}
    assert len(engine.store.query("SELECT * FROM httpd_vlogger")) == 1
    assert not engine.store.connection.in_transaction
    assert engine.collect_traffic(date(2024, 1, 2)) == {"example.test": 105}


def test_failed_first_commit_leaves_no_database(engine: Engine) -> None:
    _log(engine, "example.test", "20240101", 100)

    with _reader_lock(engine):
        with pytest.raises(TrafficError):
            engine.collect_traffic(date(2024, 1, 1))

    assert not engine.config.traffic_db.exists()
    assert engine.collect_traffic(date(2024, 1, 1)) == {"example.test": 100}
