from __future__ import annotations

import asyncio
import io
import logging
import time
from typing import Any, Mapping, Protocol

import httpx
import maxminddb

from ipgeo.config import GEOIP_LOCALES
from ipgeo.errors import DatabaseIOError
from ipgeo.fetchers.database import DatabaseProvider
from ipgeo.models import UNKNOWN, GeoRecord
from ipgeo.validation import is_loopback

logger = logging.getLogger(__name__)


class Decoder(Protocol):
    """The part of maxminddb.Reader the resolver relies on."""

    def get(self, ip_address: str) -> Any: ...

    def close(self) -> None: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def open_decoder(blob: bytes, name: str = "<memory>") -> maxminddb.Reader:
    """Build a MaxMind reader over an in-memory database blob."""
    buf = io.BytesIO(blob)
    buf.name = name  # the pure-Python reader records the source name
    try:
        return maxminddb.open_database(buf, mode=maxminddb.MODE_FD)
    except (maxminddb.InvalidDatabaseError, ValueError) as exc:
        raise DatabaseIOError(f"Invalid GeoIP database {name}: {exc}") from exc


def localized_name(names: Mapping[str, str] | None, locales: tuple[str, ...]) -> str:
    """First name found in locale order, else "Unknown"."""
    if not names:
        return UNKNOWN
    for loc in locales:
        value = names.get(loc)
        if value:
            return value
    return UNKNOWN


class GeoResolver:
    """Country lookups against an opened MaxMind decoder. Safe to share across requests."""

    def __init__(self, decoder: Decoder, locales: tuple[str, ...] = GEOIP_LOCALES) -> None:
        self._decoder = decoder
        self.locales = locales or ("en",)

    def resolve(self, ip: str) -> GeoRecord | None:
        """Return the record for ip, or None when there is nothing to report.

        Loopback addresses are never looked up. Addresses the decoder rejects
        are logged and treated as a miss.
        """
        ip = ip.strip()
        if not ip or is_loopback(ip):
            return None
        try:
            raw = self._decoder.get(ip)
        except (ValueError, TypeError, maxminddb.InvalidDatabaseError) as exc:
            logger.warning("GeoIP lookup failed for %r: %s", ip, exc)
            return None
        if not raw:
            return None
        return self._to_record(ip, raw)

    def _to_record(self, ip: str, raw: Mapping[str, Any]) -> GeoRecord:
        country = raw.get("country") or {}
        continent = raw.get("continent") or {}
        return GeoRecord(
            ip=ip,
            country=localized_name(country.get("names"), self.locales),
            continent=localized_name(continent.get("names"), self.locales),
            iso_code=country.get("iso_code") or UNKNOWN,
            is_eu=bool(country.get("is_in_european_union", False)),
            timestamp=_now_ms(),
        )

    def close(self) -> None:
        self._decoder.close()


class ResolverHandle:
    """Owns the process-wide GeoResolver.

    The resolver is built on first use (download if needed, load, open) and
    kept until close(). Construction runs under a lock, and the resolver is
    published only once fully built. A failed build is not cached.
    """

    def __init__(
        self,
        provider: DatabaseProvider,
        locales: tuple[str, ...] = GEOIP_LOCALES,
    ) -> None:
        self._provider = provider
        self._locales = locales
        self._lock = asyncio.Lock()
        self._resolver: GeoResolver | None = None

    @property
    def loaded(self) -> bool:
        return self._resolver is not None

    async def get(self, client: httpx.AsyncClient) -> GeoResolver:
        if self._resolver is not None:
            return self._resolver
        async with self._lock:
            if self._resolver is None:
                self._resolver = await self._build(client)
        return self._resolver

    async def _build(self, client: httpx.AsyncClient) -> GeoResolver:
        await self._provider.ensure(client)
        blob = await asyncio.to_thread(self._provider.load)
        decoder = open_decoder(blob, str(self._provider.path))
        logger.info("GeoIP database loaded from %s (%d bytes)", self._provider.path, len(blob))
        return GeoResolver(decoder, self._locales)

    def close(self) -> None:
        if self._resolver is not None:
            self._resolver.close()
            self._resolver = None
