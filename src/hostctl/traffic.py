"""Aggregation of per-vhost HTTP traffic logged by the Apache vlogger."""
from __future__ import annotations

import sqlite3
from collections.abc import Mapping
from datetime import date
from pathlib import Path

from .errors import HostctlError
from .hooks import HookRegistry
from .state import StateRegistry, StateRegistryError
from .store import EntityStore, StoreError

AFTER_TRAFFIC_COLLECTED = "after_traffic_collected"


class TrafficError(HostctlError):
    """Raised when traffic collection fails and has been rolled back."""


def _load_database(registry: StateRegistry, name: str) -> dict[str, int]:
    raw = registry.read(name, default={})
    if not isinstance(raw, Mapping):
        raise TrafficError(f"Traffic database {registry.path_for(name)} must be a mapping.")
    traffic: dict[str, int] = {}
    for vhost, value in raw.items():
        try:
            traffic[str(vhost)] = int(value)
        except (TypeError, ValueError) as exc:
            raise TrafficError(f"Invalid traffic value for {vhost}: {value!r}.") from exc
    return traffic


def _restore_database(registry: StateRegistry, name: str, previous: dict[str, int] | None) -> None:
    if previous is None:
        registry.delete(name)
    else:
        registry.write(name, previous)


def collect_http_traffic(
    store: EntityStore,
    db_path: Path,
    hooks: HookRegistry,
    today: date | None = None,
) -> dict[str, int]:
    """Fold logged bytes up to *today* into the traffic database.

    Source rows are consumed inside one transaction and the database file is
    written just before the commit. When anything fails, including the
    commit, the transaction is rolled back, the file is put back as it was,
    the rows stay for a later run and :class:`TrafficError` is raised. On
    success a callback removing the file is registered on
    ``after_traffic_collected`` for the consumer to fire once the totals have
    been accounted for.
    """
    registry = StateRegistry(db_path.parent)
    name = db_path.name
    collected = _load_database(registry, name)
    previous = dict(collected) if registry.path_for(name).exists() else None
    ldate = (today or date.today()).strftime("%Y%m%d")
    written = False

    try:
        with store.transaction() as connection:
            rows = connection.execute(
                "SELECT vhost, bytes FROM httpd_vlogger WHERE ldate <= ?", (ldate,)
            ).fetchall()
            for row in rows:
                vhost = str(row["vhost"])
                collected[vhost] = collected.get(vhost, 0) + int(row["bytes"] or 0)
            connection.execute("DELETE FROM httpd_vlogger WHERE ldate <= ?", (ldate,))
            registry.write(name, collected)
            written = True
    except (sqlite3.Error, StoreError, StateRegistryError) as exc:
        if written:
            try:
                _restore_database(registry, name, previous)
            except StateRegistryError as restore_exc:
                raise TrafficError(
                    f"Could not collect traffic data: {exc}; restoring "
                    f"{registry.path_for(name)} failed: {restore_exc}"
                ) from exc
        raise TrafficError(f"Could not collect traffic data: {exc}") from exc

    hooks.register(AFTER_TRAFFIC_COLLECTED, lambda: registry.delete(name))
    return collected


__all__ = ["AFTER_TRAFFIC_COLLECTED", "TrafficError", "collect_http_traffic"]
