"""IP address helpers used when building vhost listen directives."""
from __future__ import annotations

import ipaddress
from collections.abc import Iterable


def normalize_addr(value: str) -> str:
    """Return the canonical text form of *value*.

    Surrounding whitespace and IPv6 brackets are dropped. Strings that are
    not addresses (``*`` or a host name) are returned stripped.
    """
    text = value.strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    try:
        return str(ipaddress.ip_address(text))
    except ValueError:
        return text


def addr_version(value: str) -> str:
    """Return ``ipv6`` for IPv6 addresses and ``ipv4`` otherwise."""
    try:
        address = ipaddress.ip_address(normalize_addr(value))
    except ValueError:
        return "ipv4"
    return "ipv6" if address.version == 6 else "ipv4"


def unique_addrs(values: Iterable[str]) -> list[str]:
    """Normalise *values* and drop duplicates, keeping first occurrences."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if not value or not value.strip():
            continue
        normalized = normalize_addr(value)
        if normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


def format_listen(ips: Iterable[str], port: int) -> str:
    """Return the space separated ``ip:port`` list for a VirtualHost line."""
    parts = []
    for ip in ips:
        if addr_version(ip) == "ipv6":
            parts.append(f"[{ip}]:{port}")
        else:
            parts.append(f"{ip}:{port}")
    return " ".join(parts)


__all__ = ["addr_version", "format_listen", "normalize_addr", "unique_addrs"]
