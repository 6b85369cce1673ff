"""SQLite-backed access to the entity tables driven by the control panel.

The web UI inserts and updates rows with a ``to*`` status; hostctl reads
them, acts, and writes back exactly one outcome per entity.
"""
from __future__ import annotations

import re
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .errors import HostctlError

PENDING_STATUSES = ("toadd", "tochange", "toenable", "todisable", "todelete")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS domain (
        domain_id INTEGER PRIMARY KEY AUTOINCREMENT,
        domain_admin_id INTEGER NOT NULL,
        domain_name TEXT NOT NULL UNIQUE,
        domain_ip TEXT NOT NULL DEFAULT '127.0.0.1',
        ssl_support TEXT NOT NULL DEFAULT 'no',
        hsts_support TEXT NOT NULL DEFAULT 'no',
        cgi_support TEXT NOT NULL DEFAULT 'no',
        php_support TEXT NOT NULL DEFAULT 'yes',
        url_forward TEXT NOT NULL DEFAULT 'no',
        type_forward TEXT,
        domain_status TEXT NOT NULL DEFAULT 'toadd'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subdomain (
        subdomain_id INTEGER PRIMARY KEY AUTOINCREMENT,
        domain_id INTEGER NOT NULL,
        subdomain_name TEXT NOT NULL,
        subdomain_mount TEXT NOT NULL,
        subdomain_ip TEXT,
        ssl_support TEXT NOT NULL DEFAULT 'no',
        hsts_support TEXT NOT NULL DEFAULT 'no',
        subdomain_url_forward TEXT NOT NULL DEFAULT 'no',
        subdomain_type_forward TEXT,
        subdomain_status TEXT NOT NULL DEFAULT 'toadd'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ftp_users (
        userid TEXT PRIMARY KEY,
        admin_id INTEGER NOT NULL,
        passwd TEXT NOT NULL,
        rawpasswd TEXT,
        shell TEXT NOT NULL DEFAULT '/bin/sh',
        homedir TEXT NOT NULL,
        uid INTEGER,
        gid INTEGER,
        status TEXT NOT NULL DEFAULT 'toadd'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mail_users (
        mail_id INTEGER PRIMARY KEY AUTOINCREMENT,
        mail_acc TEXT NOT NULL,
        domain_id INTEGER NOT NULL,
        mail_type TEXT NOT NULL,
        sub_id INTEGER NOT NULL DEFAULT 0,
        mail_addr TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'toadd'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS htaccess_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        dmn_id INTEGER NOT NULL,
        uname TEXT NOT NULL,
        upass TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'toadd'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS htaccess_groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        dmn_id INTEGER NOT NULL,
        ugroup TEXT NOT NULL,
        members TEXT,
        status TEXT NOT NULL DEFAULT 'toadd'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS htaccess (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        dmn_id INTEGER NOT NULL,
        user_id TEXT,
        group_id TEXT,
        auth_type TEXT NOT NULL DEFAULT 'Basic',
        auth_name TEXT NOT NULL,
        path TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'toadd'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS httpd_vlogger (
        vhost TEXT NOT NULL,
        ldate TEXT NOT NULL,
        bytes INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (vhost, ldate)
    )
    """,
)


class StoreError(HostctlError):
    """Raised when the entity store cannot be read or written."""


class StoreWriteFailure(StoreError):
    """Raised when persisting an entity outcome fails."""


class DataNotFound(HostctlError):
    """Raised when no row matches the requested entity id."""


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise StoreError(f"Invalid SQL identifier {name!r}.")
    return name


class EntityStore:
    """Thin wrapper around a sqlite3 connection to the panel database."""

    def __init__(self, path: Path) -> None:
        """Remember *path*; the connection opens lazily."""
        self.path = Path(path)
        self._connection: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the open connection, opening it on first use."""
        if self._connection is None:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                connection = sqlite3.connect(str(self.path), isolation_level=None)
            except (OSError, sqlite3.Error) as exc:
                raise StoreError(f"Could not open database {self.path}: {exc}") from exc
            connection.row_factory = sqlite3.Row
            self._connection = connection
        return self._connection

    def close(self) -> None:
        """Close the underlying connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def init_schema(self) -> None:
        """Create every entity table that does not exist yet."""
        try:
            with self.transaction() as connection:
                for statement in SCHEMA:
                    connection.execute(statement)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not initialise schema in {self.path}: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in one transaction.

        The transaction commits when the block exits normally and rolls back
        when it raises or when the commit itself fails.
        """
        connection = self.connection
        connection.execute("BEGIN")
        try:
            yield connection
            connection.execute("COMMIT")
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK")
            raise

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a read query and return rows as dictionaries."""
        try:
            rows = self.connection.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Query failed: {exc}") from exc
        return [dict(row) for row in rows]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a single write statement in its own transaction."""
        try:
            with self.transaction() as connection:
                cursor = connection.execute(sql, tuple(params))
        except sqlite3.Error as exc:
            raise StoreWriteFailure(f"Write failed: {exc}") from exc
        return cursor.rowcount

    def load(self, table: str, pk: str, entity_id: object) -> dict[str, Any]:
        """Return the row of *table* whose *pk* equals *entity_id*."""
        rows = self.query(
            f"SELECT * FROM {_ident(table)} WHERE {_ident(pk)} = ?",  # noqa: S608
            (entity_id,),
        )
        if not rows:
            raise DataNotFound(f"Data not found for {table} (ID {entity_id}).")
        return rows[0]

    def update_status(
        self,
        table: str,
        status_column: str,
        pk: str,
        entity_id: object,
        status: str,
    ) -> None:
        """Persist *status* for one entity."""
        self.execute(
            f"UPDATE {_ident(table)} SET {_ident(status_column)} = ? "  # noqa: S608
            f"WHERE {_ident(pk)} = ?",
            (status, entity_id),
        )

    def delete(self, table: str, pk: str, entity_id: object) -> None:
        """Delete the row of one entity."""
        self.execute(
            f"DELETE FROM {_ident(table)} WHERE {_ident(pk)} = ?",  # noqa: S608
            (entity_id,),
        )

    def pending_ids(self, table: str, pk: str, status_column: str) -> list[Any]:
        """Return the ids of rows waiting for processing, in key order."""
        placeholders = ", ".join("?" for _ in PENDING_STATUSES)
        rows = self.query(
            f"SELECT {_ident(pk)} AS id FROM {_ident(table)} "  # noqa: S608
            f"WHERE {_ident(status_column)} IN ({placeholders}) ORDER BY {_ident(pk)}",
            PENDING_STATUSES,
        )
        return [row["id"] for row in rows]


__all__ = [
    "PENDING_STATUSES",
    "DataNotFound",
    "EntityStore",
    "StoreError",
    "StoreWriteFailure",
]
