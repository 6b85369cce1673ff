"""BIND provider maintaining per-subdomain fragments inside zone files."""
from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from ..config import AppConfig
from ..filesystem import FilesystemError, read_file, write_file
from ..hooks import HookRegistry
from ..logging import StructuredLogger
from ..net import addr_version
from ..records import WebDomainData
from ..templates import TemplateEngine, render, strip_section
from .service import ServiceManager

_SOA_SERIAL = re.compile(r"(\bSOA\b[^(]*\(\s*)(\d+)", re.IGNORECASE)


def subdomain_markers(label: str) -> tuple[str, str]:
    """Return the comment lines delimiting the fragment of *label*."""
    return f"; sub [{label}] entry BEGIN.", f"; sub [{label}] entry END."


def _record_type(ip: str) -> str:
    return "AAAA" if addr_version(ip) == "ipv6" else "A"


def bump_serial(zone: str, today: date | None = None) -> str:
    """Increase the SOA serial of *zone* using the ``YYYYMMDDnn`` scheme."""
    base = int((today or date.today()).strftime("%Y%m%d")) * 100

    def _next(match: re.Match[str]) -> str:
        current = int(match.group(2))
        serial = current + 1 if current >= base else base
        return f"{match.group(1)}{serial}"

    return _SOA_SERIAL.sub(_next, zone, count=1)


@dataclass(slots=True)
class NamedProvider:
    """Add and remove subdomain records in the parent domain's zone file."""

    config: AppConfig
    templates: TemplateEngine
    hooks: HookRegistry
    service: ServiceManager
    logger: StructuredLogger
    reload_pending: bool = field(default=False, init=False)

    def zone_path(self, domain_name: str) -> Path:
        """Return the zone database path of *domain_name*."""
        return self.config.named.db_dir / f"{domain_name}.db"

    def add_subdomain(self, data: WebDomainData, today: date | None = None) -> None:
        """Insert or replace the records of a subdomain in its parent zone."""
        self.hooks.trigger("before_named_add_subdomain", data)
        parent = data.parent_domain_name or data.domain_name
        label = data.subdomain_label
        base_ip = self.config.system.base_server_ip
        fragment = render(
            self.templates.load("bind/db_sub.tpl"),
            {
                "SUBDOMAIN_NAME": label,
                "DOMAIN_NAME": parent,
                "DOMAIN_IP": data.domain_ip,
                "IP_TYPE": _record_type(data.domain_ip),
                "BASE_SERVER_IP": base_ip,
                "BASE_SERVER_IP_TYPE": _record_type(base_ip),
            },
        )
        begin, end = subdomain_markers(label)
        fragment = fragment.rstrip("\n")
        block = f"{begin}\n{fragment}\n{end}\n"

        def _update(zone: str) -> str:
            if begin in zone:
                return strip_section(zone, begin, end, block, count=1)
            if zone and not zone.endswith("\n"):
                zone += "\n"
            return zone + block

        self._update_zone(parent, _update, today, missing_ok=False)
        self.hooks.trigger("after_named_add_subdomain", data)

    def delete_subdomain(self, data: WebDomainData, today: date | None = None) -> None:
        """Remove the records of a subdomain from its parent zone."""
        self.hooks.trigger("before_named_delete_subdomain", data)
        parent = data.parent_domain_name or data.domain_name
        begin, end = subdomain_markers(data.subdomain_label)
        self._update_zone(
            parent, lambda zone: strip_section(zone, begin, end), today, missing_ok=True
        )
        self.hooks.trigger("after_named_delete_subdomain", data)

    def _update_zone(
        self,
        domain_name: str,
        update: Callable[[str], str],
        today: date | None,
        *,
        missing_ok: bool,
    ) -> None:
        path = self.zone_path(domain_name)
        if not path.is_file():
            if missing_ok:
                self.logger.debug(f"Zone file {path} not found; nothing to remove.")
                return
            raise FilesystemError(f"Zone file {path} not found.")

        zone = read_file(path)
        updated = update(zone)
        if updated == zone:
            return
        stat = os.stat(path)
        write_file(path, bump_serial(updated, today), mode=stat.st_mode & 0o7777)
        try:
            os.chown(path, stat.st_uid, stat.st_gid)
        except OSError as exc:
            raise FilesystemError(f"Could not restore ownership of {path}: {exc}") from exc
        self.reload_pending = True

    def reload(self) -> None:
        """Ask BIND to reload its zones."""
        self.service.reload(self.config.named.service_name)
        self.reload_pending = False

    def restart_if_pending(self) -> bool:
        """Reload BIND only when a zone changed; return whether it ran."""
        if not self.reload_pending:
            return False
        self.reload()
        return True


__all__ = ["NamedProvider", "bump_serial", "subdomain_markers"]
