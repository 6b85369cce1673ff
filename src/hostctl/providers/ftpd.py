"""vsftpd provider: per-user configuration files and the deny list."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..config import AppConfig
from ..filesystem import read_file, remove_file, write_file
from ..hooks import HookRegistry
from ..logging import StructuredLogger
from ..records import FtpUserData
from ..templates import TemplateEngine
from .service import ServiceManager


@dataclass(slots=True)
class FtpdProvider:
    """Manage virtual FTP accounts for vsftpd."""

    config: AppConfig
    templates: TemplateEngine
    hooks: HookRegistry
    service: ServiceManager
    logger: StructuredLogger
    restart_pending: bool = field(default=False, init=False)

    def user_conf_path(self, username: str) -> Path:
        """Return the per-user configuration file of *username*."""
        return self.config.ftpd.user_conf_dir / username

    def add_user(self, data: FtpUserData) -> None:
        """Write the account's configuration and allow it to log in."""
        self.hooks.trigger("before_ftpd_add_user", data)
        content = self.templates.render("vsftpd/user.conf.tpl", data.context())
        content = self.hooks.pipe("after_ftpd_build_user_conf", content, data)
        write_file(
            self.user_conf_path(data.username),
            content,
            user=self.config.system.root_user,
            group=self.config.system.root_group,
            mode=0o640,
        )
        self._set_denied(data.username, denied=False)
        self.restart_pending = True
        self.hooks.trigger("after_ftpd_add_user", data)

    def disable_user(self, data: FtpUserData) -> None:
        """Put the account on the deny list."""
        self.hooks.trigger("before_ftpd_disable_user", data)
        self._set_denied(data.username, denied=True)
        self.restart_pending = True
        self.hooks.trigger("after_ftpd_disable_user", data)

    def delete_user(self, data: FtpUserData) -> None:
        """Remove the account's configuration and its deny list entry."""
        self.hooks.trigger("before_ftpd_delete_user", data)
        remove_file(self.user_conf_path(data.username))
        self._set_denied(data.username, denied=False)
        self.restart_pending = True
        self.hooks.trigger("after_ftpd_delete_user", data)

    def _set_denied(self, username: str, *, denied: bool) -> None:
        path = self.config.ftpd.userlist_file
        lines = read_file(path).splitlines()
        kept = [line for line in lines if line.strip() != username]
        if denied:
            kept.append(username)
        if kept == lines and path.exists():
            return
        write_file(
            path,
            "".join(f"{line}\n" for line in kept),
            user=self.config.system.root_user,
            group=self.config.system.root_group,
            mode=0o644,
        )

    def restart(self) -> None:
        """Restart vsftpd so that configuration changes take effect."""
        self.service.restart(self.config.ftpd.service_name)
        self.restart_pending = False

    def restart_if_pending(self) -> bool:
        """Restart vsftpd only when an account changed; return whether it ran."""
        if not self.restart_pending:
            return False
        self.restart()
        return True


__all__ = ["FtpdProvider"]
