"""Server providers driven by the hostctl modules."""
from __future__ import annotations

from .apache import ApacheProvider
from .ftpd import FtpdProvider
from .mta import MtaProvider
from .named import NamedProvider
from .service import ServiceError, ServiceManager

__all__ = [
    "ApacheProvider",
    "FtpdProvider",
    "MtaProvider",
    "NamedProvider",
    "ServiceError",
    "ServiceManager",
]
