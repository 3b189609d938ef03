from __future__ import annotations

import os

APP_VERSION = "1.0.0"

GEOIP_DB_URL = os.getenv(
    "GEOIP_DB_URL",
    "https://raw.githubusercontent.com/Loyalsoldier/geoip/release/GeoLite2-Country.mmdb",
)
GEOIP_DB_PATH = os.getenv("GEOIP_DB_PATH", "/data/GeoLite2-Country.mmdb")

# Name lookup order for country/continent; first locale with a name wins
GEOIP_LOCALES: tuple[str, ...] = tuple(
    loc.strip() for loc in os.getenv("GEOIP_LOCALES", "zh-CN,en").split(",") if loc.strip()
)

PUBLIC_IP_URL = os.getenv("PUBLIC_IP_URL", "https://api64.ipify.org?format=json")
IP_LIST_URL = os.getenv(
    "IP_LIST_URL",
    "https://raw.githubusercontent.com/rdone4425/cfipcaiji/refs/heads/main/ip.txt",
)

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))
DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "60"))
RETRY_ATTEMPTS = int(os.getenv("RETRY_ATTEMPTS", "3"))
RETRY_BACKOFF_SECONDS = float(os.getenv("RETRY_BACKOFF_SECONDS", "1"))

# Empty = in-memory store (lost on restart)
KV_STORE_DIR = os.getenv("KV_STORE_DIR", "")

SERVER_HOST = "0.0.0.0"
SERVER_PORT = int(os.getenv("PORT", "8080"))
