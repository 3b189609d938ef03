from __future__ import annotations

import ipaddress
import re

# Dotted quad, ASCII digits only (\d would also match other Unicode digits)
_IPV4_RE = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})")

LOOPBACK_ADDRESSES = frozenset({"127.0.0.1", "::1"})


def is_valid_ipv4(s: object) -> bool:
    if not isinstance(s, str):
        return False
    m = _IPV4_RE.fullmatch(s)
    if not m:
        return False
    return all(int(octet) <= 255 for octet in m.groups())


def is_valid_ipv6(s: object) -> bool:
    """Accept full, compressed, IPv4-tailed and zone-indexed (fe80::1%eth0) forms."""
    if not isinstance(s, str) or ":" not in s or s != s.strip():
        return False
    try:
        ipaddress.IPv6Address(s)
    except ValueError:
        return False
    return True


def is_valid_ip(s: object) -> bool:
    return is_valid_ipv4(s) or is_valid_ipv6(s)


def classify_version(s: str | None) -> str:
    """Return "IPv6" if the string contains a colon, else "IPv4".

    Only meaningful for strings that already passed is_valid_ip().
    """
    if s and ":" in s:
        return "IPv6"
    return "IPv4"


def is_loopback(s: str | None) -> bool:
    return s in LOOPBACK_ADDRESSES
