from __future__ import annotations

import logging
from pathlib import Path

import httpx

from ipgeo.config import DOWNLOAD_TIMEOUT_SECONDS, GEOIP_DB_PATH, GEOIP_DB_URL
from ipgeo.errors import DatabaseIOError, DownloadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class DatabaseProvider:
    """Keeps a local copy of the GeoIP database and hands it out as bytes.

    ensure() downloads only when the file is missing. An existing file is
    trusted as-is: there is no checksum or freshness check.
    """

    def __init__(
        self,
        path: str | Path = GEOIP_DB_PATH,
        url: str = GEOIP_DB_URL,
        timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
    ) -> None:
        self.path = Path(path)
        self.url = url
        self.timeout = timeout

    @property
    def _part_path(self) -> Path:
        return self.path.with_name(self.path.name + ".part")

    async def ensure(self, client: httpx.AsyncClient) -> bool:
        """Make sure the database file exists. Returns True if it was downloaded."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DatabaseIOError(f"Cannot create {self.path.parent}: {exc}") from exc

        if self.path.exists():
            return False

        logger.info("Downloading GeoIP database: %s", self.url)
        part = self._part_path
        try:
            size = await self._download(client, part)
            part.replace(self.path)
        except BaseException:
            # Covers cancellation too: never leave a half-written file behind
            part.unlink(missing_ok=True)
            raise
        logger.info("GeoIP database downloaded to %s (%d bytes)", self.path, size)
        return True

    async def _download(self, client: httpx.AsyncClient, dest: Path) -> int:
        size = 0
        try:
            async with client.stream(
                "GET", self.url, timeout=self.timeout, follow_redirects=True
            ) as resp:
                if not resp.is_success:
                    raise DownloadError(
                        f"Failed to download database: HTTP {resp.status_code}"
                    )
                with dest.open("wb") as f:
                    async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        size += len(chunk)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to download database: {exc}") from exc
        except OSError as exc:
            raise DatabaseIOError(f"Cannot write {dest}: {exc}") from exc
        return size

    def load(self) -> bytes:
        """Read the whole database file into memory."""
        try:
            return self.path.read_bytes()
        except OSError as exc:
            raise DatabaseIOError(f"Cannot read {self.path}: {exc}") from exc

    def remove(self) -> bool:
        """Delete the local copy so the next ensure() downloads afresh."""
        try:
            if not self.path.exists():
                return False
            self.path.unlink()
        except OSError as exc:
            raise DatabaseIOError(f"Cannot remove {self.path}: {exc}") from exc
        logger.info("Removed GeoIP database %s", self.path)
        return True
