from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from ipgeo.config import PUBLIC_IP_URL
from ipgeo.errors import UpstreamFetchError
from ipgeo.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


async def fetch_public_ip(
    client: httpx.AsyncClient,
    url: str = PUBLIC_IP_URL,
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> str:
    """Ask an external echo service (ipify-style JSON {"ip": ...}) for our public IP.

    Raises UpstreamFetchError once the retry budget is spent. Callers use this
    as a best-effort fallback and should not fail the request on it.
    """

    async def _attempt() -> str:
        resp = await client.get(url)
        resp.raise_for_status()
        data = resp.json()
        ip = data.get("ip") if isinstance(data, dict) else None
        if not ip or not isinstance(ip, str):
            raise UpstreamFetchError(f"No 'ip' field in response from {url}")
        return ip.strip()

    try:
        return await with_retry(_attempt, policy, sleep=sleep)
    except UpstreamFetchError:
        raise
    except policy.retry_on as exc:
        raise UpstreamFetchError(f"Public IP lookup failed: {type(exc).__name__}: {exc}") from exc
