#!/usr/bin/env python3
"""Download the GeoLite2 country database ahead of the first request.

Usage: python tools/update_db.py [db_path] [--force]

Without --force an existing file is left alone. --force deletes it first
so a fresh copy is fetched.
"""
import asyncio
import logging
import sys

import httpx

from ipgeo.config import GEOIP_DB_PATH, GEOIP_DB_URL
from ipgeo.errors import GeoServiceError
from ipgeo.fetchers.database import DatabaseProvider


async def update(path, force, url=GEOIP_DB_URL, transport=None):
    provider = DatabaseProvider(path, url)
    if force:
        provider.remove()
    async with httpx.AsyncClient(transport=transport) as client:
        return await provider.ensure(client)


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = [a for a in sys.argv[1:] if a != "--force"]
    force = "--force" in sys.argv[1:]
    if len(args) > 1:
        print(f"Usage: {sys.argv[0]} [db_path] [--force]", file=sys.stderr)
        sys.exit(2)
    path = args[0] if args else GEOIP_DB_PATH
    try:
        downloaded = asyncio.run(update(path, force))
    except GeoServiceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    if downloaded:
        print(f"Database downloaded to {path}")
    else:
        print(f"Database already present at {path}")


if __name__ == "__main__":
    main()
