"""Entity modules processed by the engine, in dependency order."""
from __future__ import annotations

from .base import Module, ProcessResult
from .domain import DomainModule, SubdomainModule
from .ftp_user import FtpUserModule
from .htaccess import HtaccessModule, HtgroupModule, HtuserModule
from .mail_catchall import MailCatchallModule

# Parents before children: subdomains and auth rows need their domain's folder.
MODULES: tuple[type[Module], ...] = (
    DomainModule,
    SubdomainModule,
    FtpUserModule,
    MailCatchallModule,
    HtuserModule,
    HtgroupModule,
    HtaccessModule,
)

__all__ = [
    "MODULES",
    "DomainModule",
    "FtpUserModule",
    "HtaccessModule",
    "HtgroupModule",
    "HtuserModule",
    "MailCatchallModule",
    "Module",
    "ProcessResult",
    "SubdomainModule",
]
