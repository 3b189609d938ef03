import asyncio
import errno
import tempfile
import threading

import httpx
import pytest

from ipgeo.errors import DownloadError, StoreError, UpstreamFetchError
from ipgeo.fetchers.ip_list import parse_ip_list
from ipgeo.kv_store import DirectoryStore, MemoryStore
from ipgeo.refresh import RefreshWorkflow, refresh_records
from ipgeo.retry import RetryPolicy

LIST_URL = "https://list.example/ip.txt"


def _clock(start=1_700_000_000_000):
    state = {"t": start}

    def now():
        state["t"] += 1
        return state["t"]

    return now


def test_parse_ip_list_drops_blank_lines():
    text = "1.1.1.1\n\n  8.8.8.8  \r\n\t\nbad-entry\n"
    assert parse_ip_list(text) == ["1.1.1.1", "8.8.8.8", "bad-entry"]
    assert parse_ip_list("") == []


def test_mixed_batch_counts(resolver):
    store = MemoryStore()
    result = refresh_records(["1.1.1.1", "bad-entry"], resolver, store, clock=_clock())
    assert (result.total, result.processed, result.errors) == (2, 1, 1)
    assert result.failed == ["bad-entry"]
    stored = store.get("ip:1.1.1.1")
    assert stored["iso_code"] == "AU"
    assert stored["country"] == "Australia"
    assert stored["timestamp"] == 1_700_000_000_001
    assert store.get("last_update") == result.last_update == 1_700_000_000_002
    assert store.keys("ip:") == ["ip:1.1.1.1"]


def test_empty_list(resolver):
    store = MemoryStore()
    result = refresh_records([], resolver, store, clock=_clock())
    assert (result.total, result.processed, result.errors) == (0, 0, 0)
    assert store.get("last_update") == result.last_update


def test_invariant_over_varied_input(resolver):
    ips = ["8.8.8.8", "127.0.0.1", "9.9.9.9", " 2.2.2.2 ", "::1", "2001:db8::1", "x", "8.8.8.8"]
    store = MemoryStore()
    result = refresh_records(ips, resolver, store)
    assert result.processed + result.errors == result.total == len(ips)
    assert result.errors == len(result.failed)
    assert result.failed == ["127.0.0.1", "9.9.9.9", "::1", "x"]
    assert store.keys("ip:") == ["ip:2.2.2.2", "ip:2001:db8::1", "ip:8.8.8.8"]


class FlakyStore(MemoryStore):
    def __init__(self, bad_keys):
        super().__init__()
        self.bad_keys = set(bad_keys)

    def set(self, key, value):
        if key in self.bad_keys:
            raise StoreError(f"Cannot write {key!r}")
        super().set(key, value)


def test_store_failure_counts_as_error(resolver):
    store = FlakyStore({"ip:8.8.8.8"})
    result = refresh_records(["8.8.8.8", "1.1.1.1"], resolver, store)
    assert (result.total, result.processed, result.errors) == (2, 1, 1)
    assert result.failed == ["8.8.8.8"]


def test_last_update_failure_propagates(resolver):
    store = FlakyStore({"last_update"})
    with pytest.raises(StoreError):
        refresh_records(["1.1.1.1"], resolver, store)


class StubHandle:
    def __init__(self, resolver=None, error=None):
        self.resolver = resolver
        self.error = error

    async def get(self, client):
        if self.error:
            raise self.error
        return self.resolver


def _run(workflow, handler):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await workflow.run(client)

    return asyncio.run(go())


def _workflow(handle, store):
    return RefreshWorkflow(
        handle,
        store,
        list_url=LIST_URL,
        policy=RetryPolicy(attempts=2, timeout=1.0, backoff=0.0),
    )


def test_workflow_run(resolver):
    store = MemoryStore()
    workflow = _workflow(StubHandle(resolver), store)
    result = _run(workflow, lambda r: httpx.Response(200, text="1.1.1.1\nbad-entry\n\n"))

    assert (result.total, result.processed, result.errors) == (2, 1, 1)
    assert store.keys("ip:") == ["ip:1.1.1.1"]
    assert store.get("last_update") == result.last_update


def test_workflow_list_fetch_failure(resolver):
    store = MemoryStore()
    workflow = _workflow(StubHandle(resolver), store)
    with pytest.raises(UpstreamFetchError):
        _run(workflow, lambda r: httpx.Response(500))
    assert store.get("last_update") is None


def test_workflow_database_failure_is_fatal():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        return httpx.Response(200, text="1.1.1.1\n")

    workflow = _workflow(StubHandle(error=DownloadError("HTTP 404")), MemoryStore())
    with pytest.raises(DownloadError):
        _run(workflow, handler)
    assert calls["n"] == 0


def test_temp_file_failure_counts_as_error(resolver, tmp_path, monkeypatch):
    store = DirectoryStore(tmp_path / "kv")
    real_mkstemp = tempfile.mkstemp
    calls = {"n": 0}

    def mkstemp(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OSError(errno.EMFILE, "Too many open files")
        return real_mkstemp(*args, **kwargs)

    monkeypatch.setattr(tempfile, "mkstemp", mkstemp)
    result = refresh_records(["8.8.8.8", "1.1.1.1"], resolver, store)
    assert result.processed + result.errors == result.total == 2
    assert result.failed == ["8.8.8.8"]
    assert store.keys("ip:") == ["ip:1.1.1.1"]
    assert store.get("last_update") == result.last_update


class ThreadRecordingStore(MemoryStore):
    def __init__(self):
        super().__init__()
        self.threads = set()

    def set(self, key, value):
        self.threads.add(threading.get_ident())
        super().set(key, value)


def test_workflow_writes_off_the_event_loop_thread(resolver):
    store = ThreadRecordingStore()
    workflow = _workflow(StubHandle(resolver), store)
    loop_thread = {}

    async def handler(request):
        loop_thread["id"] = threading.get_ident()
        return httpx.Response(200, text="8.8.8.8\n1.1.1.1\n")

    result = _run(workflow, handler)
    assert result.processed == 2
    assert store.threads and loop_thread["id"] not in store.threads
