"""Domain and subdomain modules."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from ..config import AppConfig
from ..logging import StructuredLogger
from ..providers.apache import ApacheProvider
from ..providers.named import NamedProvider
from ..records import WebDomainData, as_flag, system_group, system_user
from ..store import EntityStore
from .base import Module, ProcessResult


def _forward(value: object) -> str:
    text = str(value or "no").strip()
    return text or "no"


class _WebModule(Module):
    def restore(self, entity_id: object) -> ProcessResult:
        """Re-create missing web files without touching vhosts or status."""
        row = self.load(entity_id)
        error = self._run("restore_files", row)
        status = str(row.get(self.status_column) or "")
        return ProcessResult(self.name, entity_id, "restore", status, error)

    def restore_files(self, data: WebDomainData) -> None:
        raise NotImplementedError


class DomainModule(_WebModule):
    """Top-level domains served by Apache."""

    name = "domain"
    label = "domain"
    table = "domain"
    pk = "domain_id"
    status_column = "domain_status"

    def __init__(
        self,
        store: EntityStore,
        config: AppConfig,
        logger: StructuredLogger,
        apache: ApacheProvider,
    ) -> None:
        super().__init__(store, config, logger)
        self.apache = apache

    def build_data(self, row: dict[str, Any]) -> WebDomainData:
        system = self.config.system
        owner_id = row["domain_admin_id"]
        home_dir = system.user_web_dir / row["domain_name"]
        return WebDomainData(
            domain_type="dmn",
            domain_name=row["domain_name"],
            domain_ip=row["domain_ip"],
            owner_id=int(owner_id),
            user=system_user(system, owner_id),
            group=system_group(system, owner_id),
            home_dir=home_dir,
            web_dir=home_dir,
            base_server_ip=system.base_server_ip,
            base_server_vhost=system.base_server_vhost,
            ssl_support=as_flag(row.get("ssl_support")),
            hsts_support=as_flag(row.get("hsts_support")),
            cgi_support=as_flag(row.get("cgi_support")),
            php_support=as_flag(row.get("php_support")),
            forward=_forward(row.get("url_forward")),
            forward_type=row.get("type_forward"),
            web_folder_protection=system.web_folder_protection,
            status=str(row.get("domain_status") or ""),
        )

    def add(self, data: WebDomainData) -> None:
        self.apache.add_domain(data)

    def disable(self, data: WebDomainData) -> None:
        self.apache.disable_domain(data)

    def delete(self, data: WebDomainData) -> None:
        self.apache.delete_domain(data)

    def restore_files(self, data: WebDomainData) -> None:
        self.apache.restore_domain(data)


class SubdomainModule(_WebModule):
    """Subdomains mounted inside their parent domain's web folder."""

    name = "subdomain"
    label = "subdomain"
    table = "subdomain"
    pk = "subdomain_id"
    status_column = "subdomain_status"

    def __init__(
        self,
        store: EntityStore,
        config: AppConfig,
        logger: StructuredLogger,
        apache: ApacheProvider,
        named: NamedProvider,
    ) -> None:
        super().__init__(store, config, logger)
        self.apache = apache
        self.named = named

    def build_data(self, row: dict[str, Any]) -> WebDomainData:
        system = self.config.system
        parent = self.store.load("domain", "domain_id", row["domain_id"])
        owner_id = parent["domain_admin_id"]
        home_dir = system.user_web_dir / parent["domain_name"]
        mount_point = "/" + str(row["subdomain_mount"]).strip("/")
        return WebDomainData(
            domain_type="sub",
            domain_name=f"{row['subdomain_name']}.{parent['domain_name']}",
            domain_ip=row.get("subdomain_ip") or parent["domain_ip"],
            owner_id=int(owner_id),
            user=system_user(system, owner_id),
            group=system_group(system, owner_id),
            home_dir=home_dir,
            web_dir=home_dir / Path(mount_point.lstrip("/")),
            base_server_ip=system.base_server_ip,
            base_server_vhost=system.base_server_vhost,
            mount_point=mount_point,
            parent_domain_name=parent["domain_name"],
            ssl_support=as_flag(row.get("ssl_support")),
            hsts_support=as_flag(row.get("hsts_support")),
            cgi_support=as_flag(parent.get("cgi_support")),
            php_support=as_flag(parent.get("php_support")),
            forward=_forward(row.get("subdomain_url_forward")),
            forward_type=row.get("subdomain_type_forward"),
            shared_mount_point=self._shared_mount_point(row, mount_point),
            web_folder_protection=system.web_folder_protection,
            status=str(row.get("subdomain_status") or ""),
        )

    def _shared_mount_point(self, row: dict[str, Any], mount_point: str) -> bool:
        """Return True when a sibling subdomain lives at or below *mount_point*."""
        siblings = self.store.query(
            "SELECT subdomain_mount FROM subdomain WHERE domain_id = ? AND subdomain_id <> ?",
            (row["domain_id"], row["subdomain_id"]),
        )
        prefix = mount_point.rstrip("/") + "/"
        for sibling in siblings:
            other = "/" + str(sibling["subdomain_mount"]).strip("/")
            if other == mount_point or other.startswith(prefix):
                return True
        return False

    def add(self, data: WebDomainData) -> None:
        self.apache.add_subdomain(data)
        self.named.add_subdomain(data)

    def disable(self, data: WebDomainData) -> None:
        self.apache.disable_subdomain(data)

    def delete(self, data: WebDomainData) -> None:
        self.named.delete_subdomain(data)
        self.apache.delete_subdomain(data)

    def restore_files(self, data: WebDomainData) -> None:
        self.apache.restore_subdomain(data)


__all__ = ["DomainModule", "SubdomainModule"]
