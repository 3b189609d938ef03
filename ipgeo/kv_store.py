from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, unquote

from ipgeo.errors import StoreError

logger = logging.getLogger(__name__)

IP_KEY_PREFIX = "ip:"
LAST_UPDATE_KEY = "last_update"


def ip_key(ip: str) -> str:
    return f"{IP_KEY_PREFIX}{ip}"


class KeyValueStore(Protocol):
    """Per-key atomic get/set. No multi-key transactions."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class MemoryStore:
    """Thread-safe in-memory store. Values are JSON-copied so callers never share state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Value for {key!r} is not JSON-serializable: {exc}") from exc
        with self._lock:
            self._data[key] = raw

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class DirectoryStore:
    """One JSON file per key under a directory.

    Keys are percent-encoded into file names. Each write goes to a temp file
    in the same directory and is renamed into place, so a reader sees either
    the old value or the new one.
    """

    SUFFIX = ".json"

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot create store directory {self._root}: {exc}") from exc
        logger.info("Key-value store at %s", self._root)

    def _path(self, key: str) -> Path:
        return self._root / (quote(key, safe="") + self.SUFFIX)

    def get(self, key: str) -> Any | None:
        p = self._path(key)
        try:
            return json.loads(p.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise StoreError(f"Cannot read {key!r}: {exc}") from exc

    def set(self, key: str, value: Any) -> None:
        try:
            data = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"Value for {key!r} is not JSON-serializable: {exc}") from exc
        with self._lock:
            tmp: str | None = None
            try:
                fd, tmp = tempfile.mkstemp(dir=self._root, suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(tmp, self._path(key))
            except OSError as exc:
                if tmp is not None:
                    Path(tmp).unlink(missing_ok=True)
                raise StoreError(f"Cannot write {key!r}: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        try:
            names = [p.name for p in self._root.iterdir() if p.name.endswith(self.SUFFIX)]
        except OSError as exc:
            raise StoreError(f"Cannot list {self._root}: {exc}") from exc
        found = (unquote(n[: -len(self.SUFFIX)]) for n in names)
        return sorted(k for k in found if k.startswith(prefix))


def build_store(directory: str) -> KeyValueStore:
    """Directory-backed store when a directory is configured, else in-memory."""
    if directory:
        return DirectoryStore(directory)
    logger.info("KV_STORE_DIR not set, using in-memory key-value store")
    return MemoryStore()
