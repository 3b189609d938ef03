from __future__ import annotations

from typing import Callable, Mapping


def _first_forwarded(value: str) -> str:
    """X-Forwarded-For is "client, proxy1, proxy2"; the client is the first entry."""
    return value.split(",")[0].strip()


# Checked in order; the first header that yields a non-empty value wins.
FORWARDING_HEADERS: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("x-forwarded-for", _first_forwarded),
    ("x-real-ip", str.strip),
    ("cf-connecting-ip", str.strip),
)


def extract_client_ip(headers: Mapping[str, str], remote_addr: str | None) -> str | None:
    """Derive the caller's IP from proxy headers, else the connection address.

    The result is not validated. Header names are expected lower-case
    (Starlette's Headers are case-insensitive anyway).
    """
    for name, parse in FORWARDING_HEADERS:
        raw = headers.get(name)
        if not raw:
            continue
        value = parse(raw)
        if value:
            return value
    return remote_addr or None
