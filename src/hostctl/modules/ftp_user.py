"""FTP user module."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from ..config import AppConfig
from ..logging import StructuredLogger
from ..providers.ftpd import FtpdProvider
from ..records import FtpUserData, system_group, system_user
from ..store import EntityStore
from .base import Module


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    return int(value)  # type: ignore[arg-type]


class FtpUserModule(Module):
    name = "ftp_user"
    label = "ftp user"
    table = "ftp_users"
    pk = "userid"
    status_column = "status"

    def __init__(
        self,
        store: EntityStore,
        config: AppConfig,
        logger: StructuredLogger,
        ftpd: FtpdProvider,
    ) -> None:
        super().__init__(store, config, logger)
        self.ftpd = ftpd

    def build_data(self, row: dict[str, Any]) -> FtpUserData:
        system = self.config.system
        return FtpUserData(
            username=row["userid"],
            owner_id=int(row["admin_id"]),
            password_crypt=row["passwd"],
            password_clear=row.get("rawpasswd") or "",
            shell=row["shell"],
            homedir=Path(row["homedir"]),
            uid=_optional_int(row.get("uid")),
            gid=_optional_int(row.get("gid")),
            user=system_user(system, row["admin_id"]),
            group=system_group(system, row["admin_id"]),
            status=str(row.get("status") or ""),
        )

    def add(self, data: FtpUserData) -> None:
        self.ftpd.add_user(data)

    def disable(self, data: FtpUserData) -> None:
        self.ftpd.disable_user(data)

    def delete(self, data: FtpUserData) -> None:
        self.ftpd.delete_user(data)


__all__ = ["FtpUserModule"]
