from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Mapping

from ipgeo.client_ip import extract_client_ip
from ipgeo.errors import UpstreamFetchError, ValidationError
from ipgeo.resolver import GeoResolver
from ipgeo.validation import classify_version, is_loopback, is_valid_ip

logger = logging.getLogger(__name__)


class LookupService:
    """Resolves one IP for the /api/ip endpoint.

    get_resolver and fetch_public_ip are zero-argument coroutine factories so
    the HTTP layer can bind them to the shared client and tests can swap in fakes.
    """

    def __init__(
        self,
        get_resolver: Callable[[], Awaitable[GeoResolver]],
        fetch_public_ip: Callable[[], Awaitable[str]],
    ) -> None:
        self._get_resolver = get_resolver
        self._fetch_public_ip = fetch_public_ip

    async def _public_ip(self) -> str | None:
        try:
            ip = await self._fetch_public_ip()
        except UpstreamFetchError as exc:
            logger.warning("Public IP fallback failed: %s", exc)
            return None
        if not is_valid_ip(ip):
            logger.warning("Public IP service returned an invalid address: %r", ip)
            return None
        return ip

    async def lookup(
        self,
        query_ip: str | None,
        headers: Mapping[str, str],
        remote_addr: str | None,
    ) -> dict:
        """Return the data object of the /api/ip response.

        An explicit query_ip must be a valid literal exactly as given, so
        surrounding whitespace is rejected (ValidationError). A derived
        address that fails validation is discarded instead; when no usable
        or only a loopback address remains, the public IP service is tried
        as a fallback.
        """
        if query_ip:
            target: str | None = query_ip
            if not is_valid_ip(target):
                raise ValidationError(f"Invalid IP address format: {query_ip!r}")
        else:
            target = extract_client_ip(headers, remote_addr)
            if target and not is_valid_ip(target):
                logger.info("Ignoring unusable client address %r", target)
                target = None

        if not target or is_loopback(target):
            target = await self._public_ip() or target

        resolver = await self._get_resolver()
        record = resolver.resolve(target) if target else None

        return {
            "ip": target or "Unknown",
            "ipVersion": classify_version(target),
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "geoInfo": record.to_geo_info() if record else None,
        }
