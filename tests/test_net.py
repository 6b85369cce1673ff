"""Tests for the address helpers."""
from __future__ import annotations

from hostctl.net import addr_version, format_listen, normalize_addr, unique_addrs


def test_normalize_addr_canonicalises_ipv6() -> None:
    assert normalize_addr(" 2001:DB8:0:0::1 ") == "2001:db8::1"
    assert normalize_addr("[2001:db8::1]") == "2001:db8::1"
    assert normalize_addr("192.0.2.1") == "192.0.2.1"
    assert normalize_addr("*") == "*"


def test_addr_version() -> None:
    assert addr_version("2001:db8::1") == "ipv6"
    assert addr_version("192.0.2.1") == "ipv4"
    assert addr_version("*") == "ipv4"


def test_unique_addrs_keeps_first_occurrence() -> None:
    """Duplicates (after normalisation) and blanks are dropped in order."""
    values = ["192.0.2.1", "2001:db8::1", "", "192.0.2.1", "2001:DB8::0001", "198.51.100.7"]

    assert unique_addrs(values) == ["192.0.2.1", "2001:db8::1", "198.51.100.7"]


def test_format_listen_brackets_ipv6() -> None:
    assert format_listen(["192.0.2.1", "2001:db8::1"], 443) == "192.0.2.1:443 [2001:db8::1]:443"
