"""Configuration loader for hostctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/hostctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``HOSTCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export HOSTCTL_HTTPD__VERSION=2.4.58
    export HOSTCTL_SYSTEM__WEB_FOLDER_PROTECTION=false

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` which are built once at startup and handed to every component
explicitly.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load hostctl configuration. Install with "
        "`pip install hostctl` or ensure PyYAML>=6.0 is available."
    ) from exc

from .errors import HostctlError

ENV_PREFIX = "HOSTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(HostctlError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class SystemConfig:
    """Host-wide settings shared by every server provider."""

    root_user: str = "root"
    root_group: str = "root"
    user_prefix: str = "vu"
    user_min_uid: int = 2000
    user_web_dir: Path = Path("/var/www/virtual")
    skel_dir: Path | None = None
    certs_dir: Path = Path("/var/www/hostctl/data/certs")
    web_folder_protection: bool = True
    base_server_ip: str = "127.0.0.1"
    base_server_vhost: str = "panel.localhost"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root_user": self.root_user,
            "root_group": self.root_group,
            "user_prefix": self.user_prefix,
            "user_min_uid": self.user_min_uid,
            "user_web_dir": str(self.user_web_dir),
            "skel_dir": str(self.skel_dir) if self.skel_dir is not None else None,
            "certs_dir": str(self.certs_dir),
            "web_folder_protection": self.web_folder_protection,
            "base_server_ip": self.base_server_ip,
            "base_server_vhost": self.base_server_vhost,
        }


@dataclass(frozen=True)
class HttpdConfig:
    """Apache integration settings."""

    version: str = "2.4.0"
    user: str = "www-data"
    group: str = "www-data"
    service_name: str = "apache2"
    conf_dir: Path = Path("/etc/apache2")
    sites_available_dir: Path = Path("/etc/apache2/sites-available")
    sites_enabled_dir: Path = Path("/etc/apache2/sites-enabled")
    custom_sites_dir: Path = Path("/etc/apache2/hostctl")
    mods_available_dir: Path = Path("/etc/apache2/mods-available")
    mods_enabled_dir: Path = Path("/etc/apache2/mods-enabled")
    log_dir: Path = Path("/var/log/apache2")
    mount_customer_logs: bool = True
    htaccess_users_filename: str = ".htpasswd"
    htaccess_groups_filename: str = ".htgroup"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "version": self.version,
            "user": self.user,
            "group": self.group,
            "service_name": self.service_name,
            "conf_dir": str(self.conf_dir),
            "sites_available_dir": str(self.sites_available_dir),
            "sites_enabled_dir": str(self.sites_enabled_dir),
            "custom_sites_dir": str(self.custom_sites_dir),
            "mods_available_dir": str(self.mods_available_dir),
            "mods_enabled_dir": str(self.mods_enabled_dir),
            "log_dir": str(self.log_dir),
            "mount_customer_logs": self.mount_customer_logs,
            "htaccess_users_filename": self.htaccess_users_filename,
            "htaccess_groups_filename": self.htaccess_groups_filename,
        }


@dataclass(frozen=True)
class NamedConfig:
    """BIND name server settings."""

    service_name: str = "bind9"
    db_dir: Path = Path("/var/cache/bind")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"service_name": self.service_name, "db_dir": str(self.db_dir)}


@dataclass(frozen=True)
class FtpdConfig:
    """vsftpd settings."""

    service_name: str = "vsftpd"
    user_conf_dir: Path = Path("/etc/vsftpd/users")
    userlist_file: Path = Path("/etc/vsftpd/user_list")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "service_name": self.service_name,
            "user_conf_dir": str(self.user_conf_dir),
            "userlist_file": str(self.userlist_file),
        }


@dataclass(frozen=True)
class MtaConfig:
    """Postfix settings."""

    service_name: str = "postfix"
    virtual_alias_map: Path = Path("/etc/postfix/hostctl/aliases")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "service_name": self.service_name,
            "virtual_alias_map": str(self.virtual_alias_map),
        }


@dataclass(frozen=True)
class ToolsConfig:
    """External command names and system tables used by the engine."""

    systemctl: str = "systemctl"
    a2ensite: str = "a2ensite"
    a2dissite: str = "a2dissite"
    a2enconf: str = "a2enconf"
    a2disconf: str = "a2disconf"
    a2enmod: str = "a2enmod"
    a2dismod: str = "a2dismod"
    cp: str = "cp"
    mount: str = "mount"
    umount: str = "umount"
    chattr: str = "chattr"
    lsattr: str = "lsattr"
    postmap: str = "postmap"
    fstab: Path = Path("/etc/fstab")
    proc_mounts: Path = Path("/proc/mounts")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {}
        for key in _TOOL_BINARIES:
            payload[key] = getattr(self, key)
        payload["fstab"] = str(self.fstab)
        payload["proc_mounts"] = str(self.proc_mounts)
        return payload


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for hostctl."""

    config_file: Path
    database: Path
    state_dir: Path
    logs_dir: Path
    templates_dir: Path
    system: SystemConfig
    httpd: HttpdConfig
    named: NamedConfig
    ftpd: FtpdConfig
    mta: MtaConfig
    tools: ToolsConfig

    @property
    def traffic_db(self) -> Path:
        """Return the path of the persisted HTTP traffic database."""
        return self.state_dir / "http_traffic.yml"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "database": str(self.database),
            "state_dir": str(self.state_dir),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "system": self.system.to_dict(),
            "httpd": self.httpd.to_dict(),
            "named": self.named.to_dict(),
            "ftpd": self.ftpd.to_dict(),
            "mta": self.mta.to_dict(),
            "tools": self.tools.to_dict(),
        }


_TOOL_BINARIES = (
    "systemctl",
    "a2ensite",
    "a2dissite",
    "a2enconf",
    "a2disconf",
    "a2enmod",
    "a2dismod",
    "cp",
    "mount",
    "umount",
    "chattr",
    "lsattr",
    "postmap",
)

DEFAULTS: dict[str, object] = {
    "config_file": "/etc/hostctl/config.yml",
    "database": "/var/lib/hostctl/hostctl.db",
    "state_dir": "/var/lib/hostctl",
    "logs_dir": "/var/log/hostctl",
    "templates_dir": "/etc/hostctl/templates",
    "system": {
        "root_user": "root",
        "root_group": "root",
        "user_prefix": "vu",
        "user_min_uid": 2000,
        "user_web_dir": "/var/www/virtual",
        "skel_dir": None,
        "certs_dir": "/var/www/hostctl/data/certs",
        "web_folder_protection": True,
        "base_server_ip": "127.0.0.1",
        "base_server_vhost": "panel.localhost",
    },
    "httpd": {
        "version": "2.4.0",
        "user": "www-data",
        "group": "www-data",
        "service_name": "apache2",
        "conf_dir": "/etc/apache2",
        "sites_available_dir": None,  # derived from conf_dir when absent
        "sites_enabled_dir": None,
        "custom_sites_dir": None,
        "mods_available_dir": None,
        "mods_enabled_dir": None,
        "log_dir": "/var/log/apache2",
        "mount_customer_logs": True,
        "htaccess_users_filename": ".htpasswd",
        "htaccess_groups_filename": ".htgroup",
    },
    "named": {
        "service_name": "bind9",
        "db_dir": "/var/cache/bind",
    },
    "ftpd": {
        "service_name": "vsftpd",
        "user_conf_dir": "/etc/vsftpd/users",
        "userlist_file": "/etc/vsftpd/user_list",
    },
    "mta": {
        "service_name": "postfix",
        "virtual_alias_map": "/etc/postfix/hostctl/aliases",
    },
    "tools": {
        **{name: name for name in _TOOL_BINARIES},
        "fstab": "/etc/fstab",
        "proc_mounts": "/proc/mounts",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    system = _as_dict(raw.get("system"), "system")
    min_uid = _expect_int(system.get("user_min_uid"), "system.user_min_uid", default=2000)
    if min_uid < 0:
        raise ConfigError("system.user_min_uid must be non-negative.")
    prefix = system.get("user_prefix")
    if prefix is not None and (not isinstance(prefix, str) or not prefix.strip()):
        raise ConfigError("system.user_prefix must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    system_map = _as_dict(raw.get("system"), "system")
    skel_value = system_map.get("skel_dir")
    system = SystemConfig(
        root_user=str(system_map.get("root_user", "root")),
        root_group=str(system_map.get("root_group", "root")),
        user_prefix=str(system_map.get("user_prefix", "vu")),
        user_min_uid=_expect_int(
            system_map.get("user_min_uid"), "system.user_min_uid", default=2000
        ),
        user_web_dir=_to_path(system_map.get("user_web_dir", "/var/www/virtual")),
        skel_dir=_to_path(skel_value) if skel_value else None,
        certs_dir=_to_path(system_map.get("certs_dir", "/var/www/hostctl/data/certs")),
        web_folder_protection=_expect_bool(
            system_map.get("web_folder_protection"),
            "system.web_folder_protection",
            default=True,
        ),
        base_server_ip=str(system_map.get("base_server_ip", "127.0.0.1")),
        base_server_vhost=str(system_map.get("base_server_vhost", "panel.localhost")),
    )

    httpd_map = _as_dict(raw.get("httpd"), "httpd")
    conf_dir = _to_path(httpd_map.get("conf_dir", "/etc/apache2"))
    httpd = HttpdConfig(
        version=str(httpd_map.get("version", "2.4.0")),
        user=str(httpd_map.get("user", "www-data")),
        group=str(httpd_map.get("group", "www-data")),
        service_name=str(httpd_map.get("service_name", "apache2")),
        conf_dir=conf_dir,
        sites_available_dir=_to_path(
            httpd_map.get("sites_available_dir") or conf_dir / "sites-available"
        ),
        sites_enabled_dir=_to_path(
            httpd_map.get("sites_enabled_dir") or conf_dir / "sites-enabled"
        ),
        custom_sites_dir=_to_path(httpd_map.get("custom_sites_dir") or conf_dir / "hostctl"),
        mods_available_dir=_to_path(
            httpd_map.get("mods_available_dir") or conf_dir / "mods-available"
        ),
        mods_enabled_dir=_to_path(
            httpd_map.get("mods_enabled_dir") or conf_dir / "mods-enabled"
        ),
        log_dir=_to_path(httpd_map.get("log_dir", "/var/log/apache2")),
        mount_customer_logs=_expect_bool(
            httpd_map.get("mount_customer_logs"), "httpd.mount_customer_logs", default=True
        ),
        htaccess_users_filename=str(httpd_map.get("htaccess_users_filename", ".htpasswd")),
        htaccess_groups_filename=str(httpd_map.get("htaccess_groups_filename", ".htgroup")),
    )

    named_map = _as_dict(raw.get("named"), "named")
    named = NamedConfig(
        service_name=str(named_map.get("service_name", "bind9")),
        db_dir=_to_path(named_map.get("db_dir", "/var/cache/bind")),
    )

    ftpd_map = _as_dict(raw.get("ftpd"), "ftpd")
    ftpd = FtpdConfig(
        service_name=str(ftpd_map.get("service_name", "vsftpd")),
        user_conf_dir=_to_path(ftpd_map.get("user_conf_dir", "/etc/vsftpd/users")),
        userlist_file=_to_path(ftpd_map.get("userlist_file", "/etc/vsftpd/user_list")),
    )

    mta_map = _as_dict(raw.get("mta"), "mta")
    mta = MtaConfig(
        service_name=str(mta_map.get("service_name", "postfix")),
        virtual_alias_map=_to_path(
            mta_map.get("virtual_alias_map", "/etc/postfix/hostctl/aliases")
        ),
    )

    tools_map = _as_dict(raw.get("tools"), "tools")
    binaries = {name: str(tools_map.get(name, name)) for name in _TOOL_BINARIES}
    tools = ToolsConfig(
        **binaries,
        fstab=_to_path(tools_map.get("fstab", "/etc/fstab")),
        proc_mounts=_to_path(tools_map.get("proc_mounts", "/proc/mounts")),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        database=_to_path(raw.get("database")),
        state_dir=_to_path(raw.get("state_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        system=system,
        httpd=httpd,
        named=named,
        ftpd=ftpd,
        mta=mta,
        tools=tools,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"yes", "true", "on", "1"}:
            return True
        if lowered in {"no", "false", "off", "0"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "FtpdConfig",
    "HttpdConfig",
    "MtaConfig",
    "NamedConfig",
    "SystemConfig",
    "ToolsConfig",
    "load_config",
]
