"""Wiring of configuration, providers and modules into one engine."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date

from .commands import CommandRunner, Runner
from .config import AppConfig
from .errors import HostctlError
from .hooks import HookRegistry
from .logging import StructuredLogger
from .modules import MODULES, DomainModule, Module, ProcessResult, SubdomainModule
from .mounts import MountManager
from .providers import ApacheProvider, FtpdProvider, MtaProvider, NamedProvider, ServiceManager
from .store import EntityStore
from .templates import TemplateEngine
from .traffic import AFTER_TRAFFIC_COLLECTED


class UnknownModule(HostctlError):
    """Raised when a module name is not registered."""


@dataclass
class Engine:
    """Long-lived handles shared by every module for one invocation."""

    config: AppConfig
    logger: StructuredLogger
    runner: CommandRunner
    hooks: HookRegistry
    templates: TemplateEngine
    store: EntityStore
    service: ServiceManager
    apache: ApacheProvider
    named: NamedProvider
    ftpd: FtpdProvider
    mta: MtaProvider
    modules: dict[str, Module] = field(default_factory=dict)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        logger: StructuredLogger | None = None,
        runner: Runner | None = None,
        fix_permissions: bool = False,
    ) -> Engine:
        """Build every collaborator from *config*."""
        logger = logger or StructuredLogger(config.logs_dir)
        command_runner = CommandRunner(logger=logger, runner=runner)
        hooks = HookRegistry()
        templates = TemplateEngine.with_overrides(config.templates_dir)
        store = EntityStore(config.database)
        tools = config.tools
        service = ServiceManager(runner=command_runner, systemctl_bin=tools.systemctl)
        mounts = MountManager(
            runner=command_runner,
            fstab=tools.fstab,
            proc_mounts=tools.proc_mounts,
            mount_bin=tools.mount,
            umount_bin=tools.umount,
        )
        apache = ApacheProvider(
            config=config,
            templates=templates,
            runner=command_runner,
            service=service,
            hooks=hooks,
            mounts=mounts,
            logger=logger,
            store=store,
            fix_permissions=fix_permissions,
        )
        named = NamedProvider(
            config=config, templates=templates, hooks=hooks, service=service, logger=logger
        )
        ftpd = FtpdProvider(
            config=config, templates=templates, hooks=hooks, service=service, logger=logger
        )
        mta = MtaProvider(
            config=config, runner=command_runner, hooks=hooks, service=service, logger=logger
        )
        engine = cls(
            config=config,
            logger=logger,
            runner=command_runner,
            hooks=hooks,
            templates=templates,
            store=store,
            service=service,
            apache=apache,
            named=named,
            ftpd=ftpd,
            mta=mta,
        )
        engine.modules = engine._build_modules()
        return engine

    def _build_modules(self) -> dict[str, Module]:
        providers: Mapping[str, object] = {
            "apache": self.apache,
            "named": self.named,
            "ftpd": self.ftpd,
            "mta": self.mta,
        }
        modules: dict[str, Module] = {}
        for module_cls in MODULES:
            wanted = _MODULE_PROVIDERS[module_cls.name]
            kwargs = {name: providers[name] for name in wanted}
            modules[module_cls.name] = module_cls(  # type: ignore[call-arg]
                self.store, self.config, self.logger, **kwargs
            )
        return modules

    def module(self, name: str) -> Module:
        """Return the module registered as *name*."""
        try:
            return self.modules[name]
        except KeyError as exc:
            known = ", ".join(self.modules)
            raise UnknownModule(f"Unknown module '{name}'. Expected one of: {known}.") from exc

    def process(self, name: str, entity_id: object) -> ProcessResult:
        """Process one entity of module *name*."""
        return self.module(name).process(entity_id)

    def run_pending(self) -> list[ProcessResult]:
        """Process every pending entity, parents first."""
        results: list[ProcessResult] = []
        for module in self.modules.values():
            for entity_id in module.pending_ids():
                results.append(module.process(entity_id))
        return results

    def restore(self, name: str, entity_id: object) -> ProcessResult:
        """Re-create the web files of a domain or subdomain."""
        module = self.module(name)
        if not isinstance(module, (DomainModule, SubdomainModule)):
            raise UnknownModule(f"Module '{name}' does not support restore.")
        return module.restore(entity_id)

    def collect_traffic(self, today: date | None = None) -> dict[str, int]:
        """Return the HTTP traffic collected since the last run."""
        return dict(self.apache.get_traffic(today))

    def acknowledge_traffic(self) -> None:
        """Signal that collected traffic was accounted for."""
        self.hooks.trigger(AFTER_TRAFFIC_COLLECTED)
        self.hooks.clear(AFTER_TRAFFIC_COLLECTED)

    def restart_services(self) -> list[str]:
        """Restart or reload the daemons whose configuration changed."""
        restarted: list[str] = []
        if self.apache.restart_if_pending():
            restarted.append(self.config.httpd.service_name)
        if self.named.restart_if_pending():
            restarted.append(self.config.named.service_name)
        if self.ftpd.restart_if_pending():
            restarted.append(self.config.ftpd.service_name)
        if self.mta.restart_if_pending():
            restarted.append(self.config.mta.service_name)
        return restarted

    def close(self) -> None:
        """Release the database connection."""
        self.store.close()


_MODULE_PROVIDERS: dict[str, tuple[str, ...]] = {
    "domain": ("apache",),
    "subdomain": ("apache", "named"),
    "ftp_user": ("ftpd",),
    "mail_catchall": ("mta",),
    "htuser": ("apache",),
    "htgroup": ("apache",),
    "htaccess": ("apache",),
}


__all__ = ["Engine", "UnknownModule"]
