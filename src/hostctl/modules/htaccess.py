"""HTTP authentication modules: users, groups and protected folders.

Every row hangs off a top-level domain (``dmn_id``); the password and group
files live at the root of that domain's web folder.
"""
from __future__ import annotations

from typing import Any

from ..config import AppConfig
from ..logging import StructuredLogger
from ..providers.apache import ApacheProvider
from ..records import HtaccessData, HtgroupData, HtuserData, system_group, system_user
from ..store import EntityStore
from .base import Module


def split_ids(value: object) -> list[str]:
    """Split a comma separated id column, dropping blanks."""
    return [item.strip() for item in str(value or "").split(",") if item.strip()]


class _HtModule(Module):
    def __init__(
        self,
        store: EntityStore,
        config: AppConfig,
        logger: StructuredLogger,
        apache: ApacheProvider,
    ) -> None:
        super().__init__(store, config, logger)
        self.apache = apache

    def _domain(self, row: dict[str, Any]) -> tuple[dict[str, Any], str, str]:
        domain = self.store.load("domain", "domain_id", row["dmn_id"])
        owner_id = domain["domain_admin_id"]
        system = self.config.system
        return domain, system_user(system, owner_id), system_group(system, owner_id)

    def _names(self, table: str, column: str, ids: list[str]) -> list[str]:
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = self.store.query(
            f"SELECT id, {column} AS name FROM {table} WHERE id IN ({placeholders})",  # noqa: S608
            ids,
        )
        names = {str(row["id"]): str(row["name"]) for row in rows}
        return [names[item] for item in ids if item in names]


class HtuserModule(_HtModule):
    name = "htuser"
    label = "htuser"
    table = "htaccess_users"

    def build_data(self, row: dict[str, Any]) -> HtuserData:
        domain, user, group = self._domain(row)
        return HtuserData(
            name=row["uname"],
            password=row["upass"],
            web_dir=self.config.system.user_web_dir / domain["domain_name"],
            user=user,
            group=group,
            web_folder_protection=self.config.system.web_folder_protection,
            status=str(row.get("status") or ""),
        )

    def add(self, data: HtuserData) -> None:
        self.apache.add_htuser(data)

    def disable(self, data: HtuserData) -> None:
        self.apache.delete_htuser(data)

    def delete(self, data: HtuserData) -> None:
        self.apache.delete_htuser(data)


class HtgroupModule(_HtModule):
    name = "htgroup"
    label = "htgroup"
    table = "htaccess_groups"

    def build_data(self, row: dict[str, Any]) -> HtgroupData:
        domain, user, group = self._domain(row)
        return HtgroupData(
            name=row["ugroup"],
            members=self._names("htaccess_users", "uname", split_ids(row.get("members"))),
            web_dir=self.config.system.user_web_dir / domain["domain_name"],
            user=user,
            group=group,
            web_folder_protection=self.config.system.web_folder_protection,
            status=str(row.get("status") or ""),
        )

    def add(self, data: HtgroupData) -> None:
        self.apache.add_htgroup(data)

    def disable(self, data: HtgroupData) -> None:
        self.apache.delete_htgroup(data)

    def delete(self, data: HtgroupData) -> None:
        self.apache.delete_htgroup(data)


class HtaccessModule(_HtModule):
    name = "htaccess"
    label = "htaccess"
    table = "htaccess"

    def build_data(self, row: dict[str, Any]) -> HtaccessData:
        domain, user, group = self._domain(row)
        web_dir = self.config.system.user_web_dir / domain["domain_name"]
        return HtaccessData(
            auth_path=web_dir / str(row["path"]).strip("/"),
            home_path=web_dir,
            auth_type=row.get("auth_type") or "Basic",
            auth_name=row["auth_name"],
            users=self._names("htaccess_users", "uname", split_ids(row.get("user_id"))),
            groups=self._names("htaccess_groups", "ugroup", split_ids(row.get("group_id"))),
            user=user,
            group=group,
            status=str(row.get("status") or ""),
        )

    def add(self, data: HtaccessData) -> None:
        self.apache.add_htaccess(data)

    def disable(self, data: HtaccessData) -> None:
        self.apache.delete_htaccess(data)

    def delete(self, data: HtaccessData) -> None:
        self.apache.delete_htaccess(data)


__all__ = ["HtaccessModule", "HtgroupModule", "HtuserModule", "split_ids"]
