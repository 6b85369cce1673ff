"""Base exception shared by the hostctl error taxonomy.

Concrete errors live beside the code that raises them (``store``,
``commands``, ``filesystem``, ``templates`` ...). They all derive from
:class:`HostctlError` so the module lifecycle driver can capture operation
failures in one place and turn them into an entity status message.
"""
from __future__ import annotations


class HostctlError(RuntimeError):
    """Root of every error raised by hostctl components."""


__all__ = ["HostctlError"]
