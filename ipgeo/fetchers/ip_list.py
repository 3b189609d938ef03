from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from ipgeo.config import IP_LIST_URL
from ipgeo.errors import UpstreamFetchError
from ipgeo.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


def parse_ip_list(text: str) -> list[str]:
    """One IP per line. Lines are stripped and blank ones dropped; nothing is validated."""
    return [line.strip() for line in text.splitlines() if line.strip()]


async def fetch_ip_list(
    client: httpx.AsyncClient,
    url: str = IP_LIST_URL,
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> list[str]:
    """Fetch and parse the newline-delimited IP list used by the refresh job."""

    async def _attempt() -> str:
        resp = await client.get(url, follow_redirects=True)
        resp.raise_for_status()
        return resp.text

    logger.info("Fetching IP list: %s", url)
    try:
        text = await with_retry(_attempt, policy, sleep=sleep)
    except policy.retry_on as exc:
        raise UpstreamFetchError(f"IP list fetch failed: {type(exc).__name__}: {exc}") from exc
    ips = parse_ip_list(text)
    logger.info("Fetched %d IPs from list", len(ips))
    return ips
