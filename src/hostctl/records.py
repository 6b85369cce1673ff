"""Typed entity data handed from the modules to the providers."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from .config import SystemConfig


def system_user(system: SystemConfig, owner_id: int) -> str:
    """Return the system user owning *owner_id*'s files."""
    return f"{system.user_prefix}{system.user_min_uid + int(owner_id)}"


def system_group(system: SystemConfig, owner_id: int) -> str:
    """Return the primary group of *owner_id*'s system user (same name)."""
    return system_user(system, owner_id)


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def as_flag(value: object) -> bool:
    """Interpret a ``yes``/``no`` style column value."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, int):
        return value != 0
    return str(value).strip().lower() in {"yes", "true", "on", "1"}


@dataclass(slots=True)
class WebDomainData:
    """A top-level domain (``dmn``) or subdomain (``sub``) web vhost."""

    domain_type: str
    domain_name: str
    domain_ip: str
    owner_id: int
    user: str
    group: str
    home_dir: Path
    web_dir: Path
    base_server_ip: str
    base_server_vhost: str
    mount_point: str = "/"
    parent_domain_name: str | None = None
    ssl_support: bool = False
    hsts_support: bool = False
    cgi_support: bool = False
    php_support: bool = True
    forward: str = "no"
    forward_type: str | None = None
    shared_mount_point: bool = False
    web_folder_protection: bool = True
    status: str = ""

    @property
    def is_forwarded(self) -> bool:
        """Return True when the vhost redirects or proxies elsewhere."""
        return self.forward != "no"

    @property
    def subdomain_label(self) -> str:
        """Return the leftmost label(s) relative to the parent domain."""
        if self.parent_domain_name and self.domain_name.endswith("." + self.parent_domain_name):
            return self.domain_name[: -len(self.parent_domain_name) - 1]
        return self.domain_name

    def context(self) -> dict[str, str]:
        """Return the placeholder values describing this vhost."""
        return {
            "DOMAIN_TYPE": self.domain_type,
            "DOMAIN_NAME": self.domain_name,
            "DOMAIN_IP": self.domain_ip,
            "PARENT_DOMAIN_NAME": self.parent_domain_name or self.domain_name,
            "OWNER_ID": str(self.owner_id),
            "USER": self.user,
            "GROUP": self.group,
            "HOME_DIR": str(self.home_dir),
            "WEB_DIR": str(self.web_dir),
            "MOUNT_POINT": self.mount_point,
            "BASE_SERVER_IP": self.base_server_ip,
            "BASE_SERVER_VHOST": self.base_server_vhost,
            "SSL_SUPPORT": _yes_no(self.ssl_support),
            "HSTS_SUPPORT": _yes_no(self.hsts_support),
            "CGI_SUPPORT": _yes_no(self.cgi_support),
            "PHP_SUPPORT": _yes_no(self.php_support),
            "FORWARD": self.forward,
            "FORWARD_TYPE": self.forward_type or "",
            "WEB_FOLDER_PROTECTION": _yes_no(self.web_folder_protection),
        }


@dataclass(slots=True)
class FtpUserData:
    """A virtual FTP account."""

    username: str
    owner_id: int
    password_crypt: str
    password_clear: str
    shell: str
    homedir: Path
    uid: int | None
    gid: int | None
    user: str
    group: str
    status: str = ""

    def context(self) -> dict[str, str]:
        """Return the placeholder values describing this account."""
        return {
            "USERNAME": self.username,
            "OWNER_ID": str(self.owner_id),
            "PASSWORD_CRYPT": self.password_crypt,
            "PASSWORD_CLEAR": self.password_clear,
            "SHELL": self.shell,
            "HOMEDIR": str(self.homedir),
            "USER_SYS_UID": "" if self.uid is None else str(self.uid),
            "USER_SYS_GID": "" if self.gid is None else str(self.gid),
            "USER_SYS_NAME": self.user,
            "USER_SYS_GNAME": self.group,
        }


@dataclass(slots=True)
class MailCatchallData:
    """A catch-all forward for every unmatched address of a domain."""

    mail_id: int
    mail_addr: str
    mail_type: str
    targets: list[str] = field(default_factory=list)
    status: str = ""

    def context(self) -> dict[str, str]:
        """Return the placeholder values describing this catch-all."""
        return {
            "MAIL_ID": str(self.mail_id),
            "MAIL_ADDR": self.mail_addr,
            "MAIL_TYPE": self.mail_type,
            "MAIL_CATCHALL": ",".join(self.targets),
        }


@dataclass(slots=True)
class HtuserData:
    """One line of a web folder's ``.htpasswd`` file."""

    name: str
    password: str
    web_dir: Path
    user: str
    group: str
    web_folder_protection: bool = True
    status: str = ""

    def context(self) -> dict[str, str]:
        """Return the placeholder values describing this HTTP user."""
        return {
            "HTUSER_NAME": self.name,
            "HTUSER_PASS": self.password,
            "WEB_DIR": str(self.web_dir),
            "USER": self.user,
            "GROUP": self.group,
        }


@dataclass(slots=True)
class HtgroupData:
    """One line of a web folder's ``.htgroup`` file."""

    name: str
    members: list[str]
    web_dir: Path
    user: str
    group: str
    web_folder_protection: bool = True
    status: str = ""

    def context(self) -> dict[str, str]:
        """Return the placeholder values describing this HTTP group."""
        return {
            "HTGROUP_NAME": self.name,
            "HTGROUP_USERS": " ".join(self.members),
            "WEB_DIR": str(self.web_dir),
            "USER": self.user,
            "GROUP": self.group,
        }


@dataclass(slots=True)
class HtaccessData:
    """HTTP authentication protecting one folder of a web tree."""

    auth_path: Path
    home_path: Path
    auth_type: str
    auth_name: str
    users: list[str]
    groups: list[str]
    user: str
    group: str
    status: str = ""

    def context(self) -> dict[str, str]:
        """Return the placeholder values describing this protection."""
        return {
            "AUTH_PATH": str(self.auth_path),
            "HOME_PATH": str(self.home_path),
            "AUTH_TYPE": self.auth_type,
            "AUTH_NAME": self.auth_name,
            "HTUSERS": " ".join(self.users),
            "HTGROUPS": " ".join(self.groups),
            "USER": self.user,
            "GROUP": self.group,
        }


__all__ = [
    "FtpUserData",
    "HtaccessData",
    "HtgroupData",
    "HtuserData",
    "MailCatchallData",
    "WebDomainData",
    "as_flag",
    "system_group",
    "system_user",
]
