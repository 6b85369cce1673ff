"""Mail catch-all module."""
from __future__ import annotations

from typing import Any

from ..config import AppConfig
from ..errors import HostctlError
from ..logging import StructuredLogger
from ..providers.mta import MtaProvider
from ..records import MailCatchallData
from ..store import PENDING_STATUSES, EntityStore
from .base import Module


class MailCatchallModule(Module):
    """Catch-all rows of ``mail_users`` (``mail_type`` ending in ``_catchall``)."""

    name = "mail_catchall"
    label = "mail catch-all"
    table = "mail_users"
    pk = "mail_id"
    status_column = "status"

    def __init__(
        self,
        store: EntityStore,
        config: AppConfig,
        logger: StructuredLogger,
        mta: MtaProvider,
    ) -> None:
        super().__init__(store, config, logger)
        self.mta = mta

    def pending_ids(self) -> list[Any]:
        placeholders = ", ".join("?" for _ in PENDING_STATUSES)
        rows = self.store.query(
            "SELECT mail_id FROM mail_users WHERE mail_type LIKE ? ESCAPE '\\' "
            f"AND status IN ({placeholders}) ORDER BY mail_id",
            ("%\\_catchall", *PENDING_STATUSES),
        )
        return [row["mail_id"] for row in rows]

    def build_data(self, row: dict[str, Any]) -> MailCatchallData:
        mail_type = str(row["mail_type"])
        if not mail_type.endswith("_catchall"):
            raise HostctlError(f"Mail account {row['mail_id']} is not a catch-all ({mail_type}).")
        targets = [target.strip() for target in str(row["mail_acc"]).split(",") if target.strip()]
        return MailCatchallData(
            mail_id=int(row["mail_id"]),
            mail_addr=row["mail_addr"],
            mail_type=mail_type,
            targets=targets,
            status=str(row.get("status") or ""),
        )

    def add(self, data: MailCatchallData) -> None:
        self.mta.add_catchall(data)

    def disable(self, data: MailCatchallData) -> None:
        self.mta.disable_catchall(data)

    def delete(self, data: MailCatchallData) -> None:
        self.mta.delete_catchall(data)


__all__ = ["MailCatchallModule"]
