from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from ipgeo.errors import UpstreamFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth another attempt: transport/status errors, per-attempt timeouts,
# unparseable bodies and upstream payloads missing the expected data.
RETRYABLE: tuple[type[BaseException], ...] = (
    httpx.HTTPError,
    asyncio.TimeoutError,
    ValueError,
    UpstreamFetchError,
)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    timeout: float = 10.0   # seconds, per attempt
    backoff: float = 1.0    # seconds, multiplied by the attempt number
    retry_on: tuple[type[BaseException], ...] = RETRYABLE

    def delay_for(self, attempt: int) -> float:
        """Wait after the given 1-based failed attempt: 1s, 2s, 3s ... for backoff=1."""
        return self.backoff * attempt


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    """Run operation up to policy.attempts times, each bounded by policy.timeout.

    A timed-out attempt is cancelled, which closes its in-flight request.
    After the last attempt the last error is re-raised unchanged; errors not
    listed in policy.retry_on propagate immediately.
    """
    if policy.attempts < 1:
        raise ValueError("RetryPolicy.attempts must be >= 1")
    for attempt in range(1, policy.attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout)
        except policy.retry_on as exc:
            if attempt == policy.attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "Attempt %d/%d failed (%s: %s), retrying in %.1fs",
                attempt, policy.attempts, type(exc).__name__, exc, delay,
            )
            await sleep(delay)
    raise AssertionError("unreachable")
