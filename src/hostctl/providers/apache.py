"""Apache (mpm-itk) provider: vhost files, web folders and site activation."""
from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from packaging.version import InvalidVersion, Version

from ..commands import CommandRunner
from ..config import AppConfig, ConfigError, HttpdConfig, SystemConfig
from ..filesystem import (
    DirectorySpec,
    Immutable,
    ensure_folders,
    is_empty,
    list_entries,
    make_dir,
    read_file,
    remove_dir,
    remove_file,
    set_rights,
    write_file,
)
from ..hooks import HookRegistry
from ..logging import StructuredLogger
from ..mounts import MountManager
from ..net import format_listen, unique_addrs
from ..records import HtaccessData, HtgroupData, HtuserData, WebDomainData
from ..store import EntityStore
from ..templates import (
    ModuleContext,
    TemplateEngine,
    TemplateMissing,
    collapse_blank_lines,
    render,
    strip_marker_lines,
    strip_named_section,
    strip_section,
)
from ..traffic import collect_http_traffic
from .service import ServiceManager

HTACCESS_BEGIN = "### START HOSTCTL PROTECTION ###"
HTACCESS_END = "### END HOSTCTL PROTECTION ###"

# Entries kept in the skeleton copy of a forwarded domain.
_FORWARD_KEEP = frozenset({"backups", "errors", "logs", ".htgroup", ".htpasswd", "phptmp"})
# First-level entries whose mode is never fixed recursively.
_NON_RECURSIVE_MODES = frozenset({"00_private", "cgi-bin", "htdocs"})

_VHOST_TEMPLATE = re.compile(r"domain(?:_ssl)?\.tpl")
_ANY_VHOST_TEMPLATE = re.compile(r"domain(?:_disabled|_redirect)?(_ssl)?\.tpl")


@dataclass(slots=True)
class ApacheProvider:
    """Build vhost files for domains and subdomains and drive ``a2en*``/``a2dis*``."""

    config: AppConfig
    templates: TemplateEngine
    runner: CommandRunner
    service: ServiceManager
    hooks: HookRegistry
    mounts: MountManager
    logger: StructuredLogger
    store: EntityStore
    fix_permissions: bool = False
    context: ModuleContext = field(default_factory=ModuleContext)
    restart_pending: bool = field(default=False, init=False)
    immutable: Immutable = field(init=False)
    _force_restart: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        """Wire the immutable helper and the template cleanup callback."""
        self.immutable = Immutable(
            runner=self.runner,
            chattr_bin=self.config.tools.chattr,
            lsattr_bin=self.config.tools.lsattr,
        )
        self.hooks.register("after_httpd_build_conf_file", self._clean_template, first=True)

    # ------------------------------------------------------------------
    # Configuration shortcuts
    # ------------------------------------------------------------------
    @property
    def httpd(self) -> HttpdConfig:
        """Return the Apache section of the configuration."""
        return self.config.httpd

    @property
    def system(self) -> SystemConfig:
        """Return the host-wide section of the configuration."""
        return self.config.system

    @property
    def is_apache24(self) -> bool:
        """Return True when the configured Apache is 2.4 or newer."""
        try:
            return Version(self.httpd.version) >= Version("2.4.0")
        except InvalidVersion as exc:
            raise ConfigError(f"Invalid httpd.version {self.httpd.version!r}.") from exc

    def site_path(self, site: str) -> Path:
        """Return the ``sites-available`` path of *site*."""
        return self.httpd.sites_available_dir / site

    def custom_path(self, domain_name: str) -> Path:
        """Return the path of the per-domain custom override file."""
        return self.httpd.custom_sites_dir / f"{domain_name}.conf"

    # ------------------------------------------------------------------
    # Domains and subdomains
    # ------------------------------------------------------------------
    def add_domain(self, data: WebDomainData) -> None:
        """Create or update the vhosts and web folder of a domain."""
        self._add(data, "domain")

    def add_subdomain(self, data: WebDomainData) -> None:
        """Create or update the vhosts and web folder of a subdomain."""
        self._add(data, "subdomain")

    def restore_domain(self, data: WebDomainData) -> None:
        """Re-create missing web files of a domain without touching its vhosts."""
        self._restore(data, "domain")

    def restore_subdomain(self, data: WebDomainData) -> None:
        """Re-create missing web files of a subdomain without touching its vhosts."""
        self._restore(data, "subdomain")

    def disable_domain(self, data: WebDomainData) -> None:
        """Replace the vhosts of a domain by the "disabled" page."""
        self.hooks.trigger("before_httpd_disable_domain", data)
        ensure_folders(self._domain_folders(data))
        name = data.domain_name
        try:
            self.context.update(data.context())
            ips = self._vhost_ips(data)
            self._set_vhost_context(ips)

            if data.hsts_support:
                self.context.update({"FORWARD": f"https://{name}/", "FORWARD_TYPE": "301"})
            template = "domain_redirect.tpl" if data.hsts_support else "domain_disabled.tpl"
            self.build_conf_file(template, data, destination=self.site_path(f"{name}.conf"))
            self.enable_sites(f"{name}.conf")

            if data.ssl_support:
                self.context.update(
                    {
                        "CERTIFICATE": str(self.system.certs_dir / f"{name}.pem"),
                        "DOMAIN_IPS": format_listen(ips, 443),
                    }
                )
                self.build_conf_file(
                    "domain_disabled_ssl.tpl", data, destination=self.site_path(f"{name}_ssl.conf")
                )
                self.enable_sites(f"{name}_ssl.conf")
            else:
                self._drop_ssl_site(name)

            self._ensure_custom_file(data)

            if data.domain_type == "dmn" and data.web_dir.is_dir():
                self.immutable.clear(data.web_dir)
                remove_dir(data.web_dir / "domain_disable_page")
                if data.web_folder_protection:
                    self.immutable.set(data.web_dir)
        finally:
            self.context.flush()
        self.hooks.trigger("after_httpd_disable_domain", data)

    def disable_subdomain(self, data: WebDomainData) -> None:
        """Replace the vhosts of a subdomain by the "disabled" page."""
        self.hooks.trigger("before_httpd_disable_subdomain", data)
        self.disable_domain(data)
        self.hooks.trigger("after_httpd_disable_subdomain", data)

    def delete_domain(self, data: WebDomainData) -> None:
        """Remove vhosts, log mount, web folder and logs of a domain.

        The first failure aborts the remaining steps; completed steps are
        not rolled back.
        """
        self.hooks.trigger("before_httpd_delete_domain", data)
        name = data.domain_name
        self.disable_sites(f"{name}.conf", f"{name}_ssl.conf")
        for path in (
            self.site_path(f"{name}.conf"),
            self.site_path(f"{name}_ssl.conf"),
            self.custom_path(name),
        ):
            if path.is_file():
                remove_file(path)

        self.umount_logs_folder(data)

        if not data.shared_mount_point and data.web_dir.is_dir():
            user_web_dir = Path(os.path.normpath(self.system.user_web_dir))
            parent = data.web_dir.parent
            self.immutable.clear(parent)
            self.immutable.clear(data.web_dir, recursive=True)
            remove_dir(data.web_dir)

            if parent != user_web_dir and parent.is_dir() and is_empty(parent):
                self.immutable.clear(parent.parent)
                remove_dir(parent)

            if data.web_folder_protection and parent != user_web_dir:
                directory = parent
                while directory != user_web_dir and directory != directory.parent:
                    if directory.is_dir():
                        self.immutable.set(directory)
                    directory = directory.parent

        remove_dir(data.home_dir / "logs" / name)
        remove_dir(self.httpd.log_dir / name)
        self.restart_pending = True
        self.hooks.trigger("after_httpd_delete_domain", data)

    def delete_subdomain(self, data: WebDomainData) -> None:
        """Remove everything :meth:`add_subdomain` created."""
        self.hooks.trigger("before_httpd_delete_subdomain", data)
        self.delete_domain(data)
        self.hooks.trigger("after_httpd_delete_subdomain", data)

    def _add(self, data: WebDomainData, kind: str) -> None:
        self.hooks.trigger(f"before_httpd_add_{kind}", data)
        try:
            self.context.update(data.context())
            self._add_cfg(data)
            self._add_files(data)
            self.restart_pending = True
        finally:
            self.context.flush()
        self.hooks.trigger(f"after_httpd_add_{kind}", data)

    def _restore(self, data: WebDomainData, kind: str) -> None:
        self.hooks.trigger(f"before_httpd_restore_{kind}", data)
        try:
            self.context.update(data.context())
            self._add_files(data)
        finally:
            self.context.flush()
        self.hooks.trigger(f"after_httpd_restore_{kind}", data)

    # ------------------------------------------------------------------
    # Vhost files
    # ------------------------------------------------------------------
    def _vhost_ips(self, data: WebDomainData) -> list[str]:
        ips = [self.system.base_server_ip, data.domain_ip]
        self.hooks.trigger("on_add_httpd_vhost_ips", data, ips)
        return unique_addrs(ips)

    def _set_vhost_context(self, ips: list[str]) -> None:
        apache24 = self.is_apache24
        self.context.update(
            {
                "BASE_SERVER_VHOST": self.system.base_server_vhost,
                "HTTPD_LOG_DIR": str(self.httpd.log_dir),
                "HTTPD_CUSTOM_SITES_DIR": str(self.httpd.custom_sites_dir),
                "USER_WEB_DIR": str(self.system.user_web_dir),
                "AUTHZ_ALLOW_ALL": "Require all granted" if apache24 else "Allow from all",
                "AUTHZ_DENY_ALL": "Require all denied" if apache24 else "Deny from all",
                "DOMAIN_IPS": format_listen(ips, 80),
            }
        )

    def _add_cfg(self, data: WebDomainData) -> None:
        self.hooks.trigger("before_httpd_add_cfg", data)
        name = data.domain_name
        ips = self._vhost_ips(data)
        self._set_vhost_context(ips)

        if data.hsts_support:
            self.context.update({"FORWARD": f"https://{name}/", "FORWARD_TYPE": "301"})
        template = (
            "domain_redirect.tpl" if data.hsts_support or data.is_forwarded else "domain.tpl"
        )
        self.build_conf_file(template, data, destination=self.site_path(f"{name}.conf"))
        self.enable_sites(f"{name}.conf")

        if data.ssl_support:
            self.context.update(
                {
                    "CERTIFICATE": str(self.system.certs_dir / f"{name}.pem"),
                    "DOMAIN_IPS": format_listen(ips, 443),
                    "FORWARD": data.forward,
                    "FORWARD_TYPE": data.forward_type or "",
                }
            )
            template = "domain_redirect_ssl.tpl" if data.is_forwarded else "domain_ssl.tpl"
            self.build_conf_file(template, data, destination=self.site_path(f"{name}_ssl.conf"))
            self.enable_sites(f"{name}_ssl.conf")
        else:
            self._drop_ssl_site(name)

        self._ensure_custom_file(data)
        self.hooks.trigger("after_httpd_add_cfg", data)

    def _drop_ssl_site(self, name: str) -> None:
        ssl_site = self.site_path(f"{name}_ssl.conf")
        if ssl_site.is_file():
            self.disable_sites(ssl_site.name)
            remove_file(ssl_site)

    def _ensure_custom_file(self, data: WebDomainData) -> None:
        custom = self.custom_path(data.domain_name)
        if not custom.is_file():
            self.build_conf_file("custom.conf.tpl", data, destination=custom)

    def build_conf_file(
        self,
        template: str | Path,
        data: WebDomainData | None = None,
        *,
        destination: Path,
        user: str | None = None,
        group: str | None = None,
        mode: int = 0o644,
    ) -> None:
        """Render *template* with the current context and write it to *destination*.

        *template* is either the name of a bundled Apache template or the path
        of a file on disk. The rendered text flows through the
        ``before_httpd_build_conf_file`` and ``after_httpd_build_conf_file``
        callbacks before it is written.
        """
        if isinstance(template, Path):
            if not template.is_file():
                raise TemplateMissing(f"Could not read template {template}.")
            filename = template.name
            text = read_file(template)
        else:
            filename = template
            text = self.templates.load(f"apache/{template}")

        text = self.hooks.pipe("before_httpd_build_conf_file", text, filename, data)
        text = render(text, self.context)
        text = self.hooks.pipe("after_httpd_build_conf_file", text, filename, data)
        write_file(
            destination,
            text,
            user=user or self.system.root_user,
            group=group or self.system.root_group,
            mode=mode,
        )
        self.logger.debug(f"Wrote {destination} from {filename}.")

    def _clean_template(self, text: str, filename: str, data: object) -> str:
        if isinstance(data, WebDomainData):
            if _VHOST_TEMPLATE.fullmatch(filename):
                text = strip_named_section(text, "suexec")
                if not data.cgi_support:
                    text = strip_named_section(text, "cgi_support")
                if data.php_support:
                    text = strip_named_section(text, "php_disabled")
                else:
                    text = strip_named_section(text, "php_enabled")
                text = strip_named_section(text, "fcgid")
                text = strip_named_section(text, "php_fpm")

            match = _ANY_VHOST_TEMPLATE.fullmatch(filename)
            if match:
                is_ssl_vhost = match.group(1) is not None
                if (
                    data.is_forwarded
                    and data.forward_type == "proxy"
                    and (not data.hsts_support or is_ssl_vhost)
                ):
                    text = strip_named_section(text, "standard_redirect")
                    if not data.forward.startswith("https"):
                        text = strip_named_section(text, "ssl_proxy")
                else:
                    text = strip_named_section(text, "proxy_redirect")
                if is_ssl_vhost and not data.hsts_support:
                    text = strip_named_section(text, "hsts")

        return collapse_blank_lines(strip_marker_lines(text))

    # ------------------------------------------------------------------
    # Web folders
    # ------------------------------------------------------------------
    def _domain_folders(self, data: WebDomainData) -> list[DirectorySpec]:
        folders: list[DirectorySpec] = []
        self.hooks.trigger("before_httpd_domain_folders", folders)
        folders.append(
            DirectorySpec(
                path=self.httpd.log_dir / data.domain_name,
                user=self.system.root_user,
                group=self.system.root_group,
                mode=0o755,
            )
        )
        self.hooks.trigger("after_httpd_domain_folders", folders)
        return folders

    def _skel_dir(self, data: WebDomainData) -> Path:
        root = self.system.skel_dir or self.templates.bundled_path("skel")
        return root / ("domain" if data.domain_type == "dmn" else "subdomain")

    def _copy_tree(self, source: Path, target: Path, *, no_clobber: bool = False) -> None:
        flags = "-nRT" if no_clobber else "-RT"
        self.runner.run([self.config.tools.cp, flags, str(source), str(target)])

    def _add_files(self, data: WebDomainData) -> None:
        self.hooks.trigger("before_httpd_add_files", data)
        ensure_folders(self._domain_folders(data))

        if data.domain_type == "dmn" or not data.is_forwarded:
            self._populate_web_folder(data)

        if self.httpd.mount_customer_logs:
            self.mount_logs_folder(data)
        self.hooks.trigger("after_httpd_add_files", data)

    def _populate_web_folder(self, data: WebDomainData) -> None:
        fix_permissions = self.fix_permissions
        skel_dir = self._skel_dir(data)
        if not skel_dir.is_dir():
            raise TemplateMissing(f"Web folder skeleton {skel_dir} not found.")
        web_dir = data.web_dir

        with tempfile.TemporaryDirectory(prefix="hostctl-skel-") as tmp:
            tmp_dir = Path(tmp)
            self._copy_tree(skel_dir, tmp_dir)

            if not data.is_forwarded:
                htdocs = web_dir / "htdocs"
                if not htdocs.is_dir() or is_empty(htdocs):
                    if not (tmp_dir / "htdocs").is_dir():
                        raise TemplateMissing(
                            "Web folder skeleton must provide the 'htdocs' directory."
                        )
                    index = tmp_dir / "htdocs" / "index.html"
                    if index.is_file():
                        self.build_conf_file(index, data, destination=index)
                    # New web folders always get their permissions fixed.
                    fix_permissions = True
                else:
                    remove_dir(tmp_dir / "htdocs")
            else:
                for entry in list_entries(tmp_dir):
                    if entry in _FORWARD_KEEP:
                        continue
                    path = tmp_dir / entry
                    if path.is_dir() and not path.is_symlink():
                        remove_dir(path)
                    else:
                        remove_file(path)

            if data.domain_type == "dmn":
                errors = web_dir / "errors"
                if errors.is_dir() and not is_empty(errors):
                    remove_dir(tmp_dir / "errors")
                elif not (tmp_dir / "errors").is_dir():
                    raise TemplateMissing(
                        "The domain web folder skeleton must provide the 'errors' directory."
                    )
                else:
                    fix_permissions = True

                if not self.httpd.mount_customer_logs:
                    self.umount_logs_folder(data)
                    remove_dir(web_dir / "logs")
                    remove_dir(tmp_dir / "logs")
                elif not (tmp_dir / "logs").is_dir():
                    raise TemplateMissing(
                        "The domain web folder skeleton must provide the 'logs' directory."
                    )

            parent = web_dir.parent
            if not parent.is_dir():
                self.immutable.clear(parent.parent)
                make_dir(parent, user=data.user, group=data.group, mode=0o750)
            else:
                self.immutable.clear(parent)
            if web_dir.is_dir():
                self.immutable.clear(web_dir)

            self._copy_tree(tmp_dir, web_dir, no_clobber=True)

        if data.domain_type == "dmn":
            remove_dir(web_dir / "domain_disable_page")
        elif not data.shared_mount_point:
            remove_dir(web_dir / "phptmp")

        self._fix_permissions(data, skel_dir, fix_permissions)

        if data.web_folder_protection:
            user_web_dir = Path(os.path.normpath(self.system.user_web_dir))
            directory = web_dir
            while True:
                self.immutable.set(directory)
                directory = directory.parent
                if directory == user_web_dir or directory == directory.parent:
                    break

    def _fix_permissions(self, data: WebDomainData, skel_dir: Path, recursive: bool) -> None:
        web_dir = data.web_dir
        set_rights(web_dir, user=data.user, group=data.group, mode=0o750)
        entries = list_entries(skel_dir)

        for entry in entries:
            path = web_dir / entry
            if entry in {".htgroup", ".htpasswd", "logs"} or not path.exists():
                continue
            set_rights(path, user=data.user, group=data.group, recursive=recursive)

        for entry in entries:
            path = web_dir / entry
            if entry == "logs" or not path.exists():
                continue
            set_rights(
                path,
                dirmode=0o750,
                filemode=0o640,
                recursive=False if entry in _NON_RECURSIVE_MODES else recursive,
            )

        for entry in (".htgroup", ".htpasswd"):
            path = web_dir / entry
            if path.exists():
                set_rights(
                    path, user=self.system.root_user, group=self.httpd.group, recursive=True
                )

        logs = web_dir / "logs"
        if data.domain_type == "dmn" and logs.is_dir():
            set_rights(logs, user=self.system.root_user, group=data.group, mode=0o750)

    # ------------------------------------------------------------------
    # Customer log folders
    # ------------------------------------------------------------------
    def mount_logs_folder(self, data: WebDomainData) -> None:
        """Bind-mount the Apache log folder of a domain into the customer's logs."""
        fields: dict[str, object] = {
            "fs_spec": Path(os.path.normpath(self.httpd.log_dir / data.domain_name)),
            "fs_file": Path(os.path.normpath(data.home_dir / "logs" / data.domain_name)),
            "fs_vfstype": "none",
            "fs_mntops": "bind",
        }
        self.hooks.trigger("before_mount_logs_folder", data, fields)
        fs_spec = Path(str(fields["fs_spec"]))
        fs_file = Path(str(fields["fs_file"]))
        if not fs_file.is_dir():
            make_dir(fs_file)
        self.mounts.add_mount_entry(
            f"{fs_spec} {fs_file} {fields['fs_vfstype']} {fields['fs_mntops']}"
        )
        if not self.mounts.is_mountpoint(fs_file):
            self.mounts.mount(fs_spec, fs_file, str(fields["fs_vfstype"]), str(fields["fs_mntops"]))
        self.hooks.trigger("after_mount_logs_folder", data, fields)

    def umount_logs_folder(self, data: WebDomainData) -> None:
        """Unmount the customer's log folder of a domain.

        For a top-level domain the whole ``logs`` folder is handled so that
        dangling mounts below it are released too.
        """
        fs_file = data.home_dir / "logs"
        if data.domain_type != "dmn":
            fs_file = fs_file / data.domain_name
        self.hooks.trigger("before_unmount_logs_folder", data, fs_file)
        self.mounts.unmount_bind(fs_file)
        self.hooks.trigger("after_unmount_logs_folder", data, fs_file)

    # ------------------------------------------------------------------
    # HTTP authentication
    # ------------------------------------------------------------------
    def add_htuser(self, data: HtuserData) -> None:
        """Add or replace a user line in the web folder's password file."""
        self._update_auth_file(
            data, self.httpd.htaccess_users_filename, data.name, data.password, "add_htuser"
        )

    def delete_htuser(self, data: HtuserData) -> None:
        """Remove a user line from the web folder's password file."""
        self._update_auth_file(
            data, self.httpd.htaccess_users_filename, data.name, None, "delete_htuser"
        )

    def add_htgroup(self, data: HtgroupData) -> None:
        """Add or replace a group line in the web folder's group file."""
        self._update_auth_file(
            data,
            self.httpd.htaccess_groups_filename,
            data.name,
            " ".join(data.members),
            "add_htgroup",
        )

    def delete_htgroup(self, data: HtgroupData) -> None:
        """Remove a group line from the web folder's group file."""
        self._update_auth_file(
            data, self.httpd.htaccess_groups_filename, data.name, None, "delete_htgroup"
        )

    def _update_auth_file(
        self,
        data: HtuserData | HtgroupData,
        filename: str,
        name: str,
        value: str | None,
        action: str,
    ) -> None:
        path = data.web_dir / filename
        self.immutable.clear(data.web_dir)
        content = read_file(path)
        content = self.hooks.pipe(f"before_httpd_{action}", content, data)
        content = re.sub(
            rf"^{re.escape(name)}:[^\n]*\n", "", content, flags=re.MULTILINE | re.IGNORECASE
        )
        if value is not None:
            content += f"{name}:{value}\n"
        content = self.hooks.pipe(f"after_httpd_{action}", content, data)
        write_file(path, content, user=self.system.root_user, group=data.group, mode=0o640)
        if data.web_folder_protection:
            self.immutable.set(data.web_dir)

    def add_htaccess(self, data: HtaccessData) -> None:
        """Write the managed protection block at the top of ``<path>/.htaccess``."""
        if not data.auth_path.is_dir():
            self.logger.debug(f"Skipping protection of missing folder {data.auth_path}.")
            return
        file_user = data.home_path / self.httpd.htaccess_users_filename
        file_group = data.home_path / self.httpd.htaccess_groups_filename
        block = (
            f"AuthType {data.auth_type}\n"
            f'AuthName "{data.auth_name}"\n'
            f"AuthUserFile {file_user}\n"
        )
        if not data.users:
            block += f"AuthGroupFile {file_group}\nRequire group {' '.join(data.groups)}\n"
        else:
            block += f"Require user {' '.join(data.users)}\n"

        def _update(content: str) -> str:
            content = strip_section(content, HTACCESS_BEGIN, HTACCESS_END)
            return f"{HTACCESS_BEGIN}\n{block}{HTACCESS_END}\n{content}"

        self._update_htaccess(data, "add_htaccess", _update)

    def delete_htaccess(self, data: HtaccessData) -> None:
        """Remove the managed protection block, deleting the file when it empties."""
        if not data.auth_path.is_dir():
            self.logger.debug(f"Skipping protection of missing folder {data.auth_path}.")
            return
        self._update_htaccess(
            data,
            "delete_htaccess",
            lambda content: strip_section(content, HTACCESS_BEGIN, HTACCESS_END),
        )

    def _update_htaccess(
        self, data: HtaccessData, action: str, update: Callable[[str], str]
    ) -> None:
        path = data.auth_path / ".htaccess"
        was_immutable = self.immutable.is_set(data.auth_path)
        if was_immutable:
            self.immutable.clear(data.auth_path)
        try:
            content = read_file(path)
            content = self.hooks.pipe(f"before_httpd_{action}", content, data)
            content = update(content)
            content = self.hooks.pipe(f"after_httpd_{action}", content, data)
            if content:
                write_file(path, content, user=data.user, group=data.group, mode=0o640)
            elif path.is_file():
                remove_file(path)
        finally:
            if was_immutable:
                self.immutable.set(data.auth_path)

    # ------------------------------------------------------------------
    # Activation and service control
    # ------------------------------------------------------------------
    def enable_sites(self, *sites: str) -> None:
        """Run ``a2ensite`` for every site present in ``sites-available``."""
        names = list(sites)
        self.hooks.trigger("before_httpd_enable_sites", names)
        for site in names:
            if not self.site_path(site).is_file():
                self.logger.warning(f"Site {site} doesn't exist.")
                continue
            self.runner.run([self.config.tools.a2ensite, site])
            self.restart_pending = True
        self.hooks.trigger("after_httpd_enable_sites", names)

    def disable_sites(self, *sites: str) -> None:
        """Run ``a2dissite`` for every site present in ``sites-available``."""
        names = list(sites)
        self.hooks.trigger("before_httpd_disable_sites", names)
        for site in names:
            if not self.site_path(site).is_file():
                self.logger.debug(f"Site {site} is not available; nothing to disable.")
                continue
            self.runner.run([self.config.tools.a2dissite, site])
            self.restart_pending = True
        self.hooks.trigger("after_httpd_disable_sites", names)

    def enable_modules(self, *modules: str) -> None:
        """Run ``a2enmod`` for every module with a ``.load`` file available."""
        names = list(modules)
        self.hooks.trigger("before_httpd_enable_modules", names)
        for module in names:
            if not (self.httpd.mods_available_dir / f"{module}.load").is_file():
                continue
            self.runner.run([self.config.tools.a2enmod, module])
            self.restart_pending = True
        self.hooks.trigger("after_httpd_enable_modules", names)

    def disable_modules(self, *modules: str) -> None:
        """Run ``a2dismod`` for every module currently enabled."""
        names = list(modules)
        self.hooks.trigger("before_httpd_disable_modules", names)
        for module in names:
            if not (self.httpd.mods_enabled_dir / f"{module}.load").is_symlink():
                continue
            self.runner.run([self.config.tools.a2dismod, module])
            self.restart_pending = True
        self.hooks.trigger("after_httpd_disable_modules", names)

    def enable_confs(self, *confs: str) -> None:
        """Run ``a2enconf`` for every configuration file available."""
        names = list(confs)
        self.hooks.trigger("before_httpd_enable_confs", names)
        available = self.httpd.conf_dir / "conf-available"
        if self.runner.which(self.config.tools.a2enconf) and available.is_dir():
            for conf in names:
                if not (available / conf).is_file():
                    self.logger.warning(f"Configuration file {conf} doesn't exist.")
                    continue
                self.runner.run([self.config.tools.a2enconf, conf])
                self.restart_pending = True
        self.hooks.trigger("after_httpd_enable_confs", names)

    def disable_confs(self, *confs: str) -> None:
        """Run ``a2disconf`` for every configuration file available."""
        names = list(confs)
        self.hooks.trigger("before_httpd_disable_confs", names)
        available = self.httpd.conf_dir / "conf-available"
        if self.runner.which(self.config.tools.a2disconf) and available.is_dir():
            for conf in names:
                if not (available / conf).is_file():
                    continue
                self.runner.run([self.config.tools.a2disconf, conf])
                self.restart_pending = True
        self.hooks.trigger("after_httpd_disable_confs", names)

    def force_restart(self) -> None:
        """Make the next :meth:`restart` a full restart instead of a reload."""
        self._force_restart = True

    def start(self) -> None:
        """Start the Apache service."""
        self.hooks.trigger("before_httpd_start")
        self.service.start(self.httpd.service_name)
        self.hooks.trigger("after_httpd_start")

    def stop(self) -> None:
        """Stop the Apache service."""
        self.hooks.trigger("before_httpd_stop")
        self.service.stop(self.httpd.service_name)
        self.hooks.trigger("after_httpd_stop")

    def restart(self) -> None:
        """Reload Apache, or restart it when :meth:`force_restart` was called."""
        self.hooks.trigger("before_httpd_restart")
        if self._force_restart:
            self.service.restart(self.httpd.service_name)
            self._force_restart = False
        else:
            self.service.reload(self.httpd.service_name)
        self.restart_pending = False
        self.hooks.trigger("after_httpd_restart")

    def restart_if_pending(self) -> bool:
        """Restart only when a change asked for it; return whether it ran."""
        if not self.restart_pending:
            return False
        self.restart()
        return True

    # ------------------------------------------------------------------
    # Traffic
    # ------------------------------------------------------------------
    def get_traffic(self, today: date | None = None) -> Mapping[str, int]:
        """Collect the bytes served per vhost since the last collection."""
        return collect_http_traffic(self.store, self.config.traffic_db, self.hooks, today)


__all__ = ["HTACCESS_BEGIN", "HTACCESS_END", "ApacheProvider"]
