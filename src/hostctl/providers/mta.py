"""Postfix provider maintaining catch-all entries of the virtual alias map."""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..commands import CommandRunner
from ..config import AppConfig
from ..filesystem import read_file, write_file
from ..hooks import HookRegistry
from ..logging import StructuredLogger
from ..records import MailCatchallData
from .service import ServiceManager


@dataclass(slots=True)
class MtaProvider:
    """Add and remove ``<address> <targets>`` lines and rebuild the map."""

    config: AppConfig
    runner: CommandRunner
    hooks: HookRegistry
    service: ServiceManager
    logger: StructuredLogger
    reload_pending: bool = field(default=False, init=False)

    def add_catchall(self, data: MailCatchallData) -> None:
        """Forward unmatched mail for the domain to the catch-all targets."""
        self.hooks.trigger("before_mta_add_catchall", data)
        self._update_map(data.mail_addr, ",".join(data.targets))
        self.hooks.trigger("after_mta_add_catchall", data)

    def disable_catchall(self, data: MailCatchallData) -> None:
        """Stop forwarding while keeping the entity."""
        self.hooks.trigger("before_mta_disable_catchall", data)
        self._update_map(data.mail_addr, None)
        self.hooks.trigger("after_mta_disable_catchall", data)

    def delete_catchall(self, data: MailCatchallData) -> None:
        """Remove the catch-all entry."""
        self.hooks.trigger("before_mta_delete_catchall", data)
        self._update_map(data.mail_addr, None)
        self.hooks.trigger("after_mta_delete_catchall", data)

    def _update_map(self, address: str, targets: str | None) -> None:
        path = self.config.mta.virtual_alias_map
        content = read_file(path)
        content = re.sub(rf"^{re.escape(address)}[ \t][^\n]*\n?", "", content, flags=re.MULTILINE)
        if targets is not None:
            if content and not content.endswith("\n"):
                content += "\n"
            content += f"{address} {targets}\n"
        write_file(
            path,
            content,
            user=self.config.system.root_user,
            group=self.config.system.root_group,
            mode=0o644,
        )
        self.runner.run([self.config.tools.postmap, str(path)])
        self.reload_pending = True

    def reload(self) -> None:
        """Reload Postfix."""
        self.service.reload(self.config.mta.service_name)
        self.reload_pending = False

    def restart_if_pending(self) -> bool:
        """Reload Postfix only when the map changed; return whether it ran."""
        if not self.reload_pending:
            return False
        self.reload()
        return True


__all__ = ["MtaProvider"]
