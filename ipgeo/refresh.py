from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable

import httpx

from ipgeo.config import IP_LIST_URL
from ipgeo.errors import StoreError
from ipgeo.fetchers.ip_list import fetch_ip_list
from ipgeo.kv_store import LAST_UPDATE_KEY, KeyValueStore, ip_key
from ipgeo.models import RefreshResult
from ipgeo.resolver import GeoResolver, ResolverHandle
from ipgeo.retry import RetryPolicy

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def refresh_records(
    ips: list[str],
    resolver: GeoResolver,
    store: KeyValueStore,
    clock: Callable[[], int] = _now_ms,
) -> RefreshResult:
    """Resolve each IP in order and upsert ip:<address> for every hit.

    Per-item failures (no record, decoder rejection, store write error) are
    collected in result.failed and never stop the loop. The final
    last_update write is not per-item, so its StoreError propagates.
    """
    stored = 0
    failed: list[str] = []
    for raw in ips:
        ip = raw.strip()
        record = resolver.resolve(ip) if ip else None
        if record is None:
            failed.append(raw)
            continue
        record = replace(record, timestamp=clock())
        try:
            store.set(ip_key(ip), record.to_store_dict())
        except StoreError:
            logger.exception("Failed to store record for %s", ip)
            failed.append(raw)
            continue
        stored += 1

    last_update = clock()
    store.set(LAST_UPDATE_KEY, last_update)
    if failed:
        logger.info("Refresh: %d unresolved, first few: %s", len(failed), failed[:5])
    return RefreshResult(
        total=len(ips),
        processed=stored,
        errors=len(failed),
        last_update=last_update,
        failed=failed,
    )


class RefreshWorkflow:
    """On-demand refresh of the IP cache from the remote list."""

    def __init__(
        self,
        handle: ResolverHandle,
        store: KeyValueStore,
        list_url: str = IP_LIST_URL,
        policy: RetryPolicy = RetryPolicy(),
    ) -> None:
        self.handle = handle
        self.store = store
        self.list_url = list_url
        self.policy = policy

    async def run(self, client: httpx.AsyncClient) -> RefreshResult:
        """Load the database, fetch the list, refresh every entry.

        Database, list and last_update failures abort the run. The per-IP
        loop does blocking store writes, so it runs in a worker thread.
        """
        try:
            resolver = await self.handle.get(client)
            ips = await fetch_ip_list(client, self.list_url, self.policy)
            result = await asyncio.to_thread(refresh_records, ips, resolver, self.store)
        except Exception:
            logger.exception("IP refresh failed")
            raise
        logger.info(
            "IP refresh done: %d total, %d processed, %d errors",
            result.total, result.processed, result.errors,
        )
        return result
