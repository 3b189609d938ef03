from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response

from ipgeo.config import (
    APP_VERSION,
    GEOIP_DB_PATH,
    GEOIP_DB_URL,
    GEOIP_LOCALES,
    HTTP_TIMEOUT_SECONDS,
    IP_LIST_URL,
    KV_STORE_DIR,
    PUBLIC_IP_URL,
    RETRY_ATTEMPTS,
    RETRY_BACKOFF_SECONDS,
)
from ipgeo.errors import GeoServiceError, ServiceNotReady
from ipgeo.fetchers.database import DatabaseProvider
from ipgeo.fetchers.public_ip import fetch_public_ip
from ipgeo.kv_store import IP_KEY_PREFIX, LAST_UPDATE_KEY, KeyValueStore, build_store
from ipgeo.lookup import LookupService
from ipgeo.models import GeoRecord
from ipgeo.refresh import RefreshWorkflow
from ipgeo.resolver import ResolverHandle
from ipgeo.retry import RetryPolicy

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

retry_policy = RetryPolicy(
    attempts=RETRY_ATTEMPTS,
    timeout=HTTP_TIMEOUT_SECONDS,
    backoff=RETRY_BACKOFF_SECONDS,
)
resolver_handle = ResolverHandle(DatabaseProvider(GEOIP_DB_PATH, GEOIP_DB_URL), GEOIP_LOCALES)
store: KeyValueStore = build_store(KV_STORE_DIR)
_start_time: float = time.monotonic()
_http_client: httpx.AsyncClient | None = None  # set during lifespan


def get_http_client() -> httpx.AsyncClient:
    if _http_client is None:
        raise ServiceNotReady("Server not ready")
    return _http_client


def get_store() -> KeyValueStore:
    return store


def get_lookup_service(client: httpx.AsyncClient = Depends(get_http_client)) -> LookupService:
    return LookupService(
        get_resolver=lambda: resolver_handle.get(client),
        fetch_public_ip=lambda: fetch_public_ip(client, PUBLIC_IP_URL, retry_policy),
    )


def get_refresh_workflow() -> RefreshWorkflow:
    return RefreshWorkflow(
        resolver_handle,
        store,
        list_url=IP_LIST_URL,
        policy=retry_policy,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _start_time, _http_client

    _start_time = time.monotonic()
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
        _http_client = client
        try:
            yield
        finally:
            _http_client = None
            resolver_handle.close()


app = FastAPI(title="IP Geolocation Service", version=APP_VERSION, lifespan=lifespan)

# Sent on every /api/ip response, with or without an Origin header
IP_API_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@app.middleware("http")
async def _ip_api_cors(request: Request, call_next):
    """Answer /api/ip preflights with an empty 200 and stamp the CORS headers."""
    if request.url.path != "/api/ip":
        return await call_next(request)
    if request.method == "OPTIONS":
        response = Response(status_code=200)
    else:
        response = await call_next(request)
    response.headers.update(IP_API_CORS_HEADERS)
    return response


def _error_body(kind: str, message: str) -> dict:
    return {"success": False, "error": kind, "message": message}


@app.exception_handler(GeoServiceError)
async def _service_error_handler(request: Request, exc: GeoServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s: %s", request.method, request.url.path, exc.kind, exc)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.kind, str(exc)))


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=_error_body("internal_error", "Internal server error"),
    )


@app.get("/api/ip")
async def get_ip_info(
    request: Request,
    ip: str | None = Query(None),
    api: str | None = Query(None),
    service: LookupService = Depends(get_lookup_service),
):
    try:
        data = await service.lookup(
            ip,
            request.headers,
            request.client.host if request.client else None,
        )
    except GeoServiceError:
        raise
    except Exception:
        logger.exception("IP lookup failed")
        return _internal_error()

    if not api:
        data["userAgent"] = request.headers.get("user-agent")
        data["acceptLanguage"] = request.headers.get("accept-language")
        data["headers"] = dict(request.headers)
    return JSONResponse(content={"success": True, "data": data})


@app.post("/api/update-ips")
async def update_ips(
    workflow: RefreshWorkflow = Depends(get_refresh_workflow),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    try:
        result = await workflow.run(client)
    except GeoServiceError:
        raise
    except Exception:
        logger.exception("IP refresh failed unexpectedly")
        return _internal_error()
    return JSONResponse(content=result.to_api_dict())


@app.get("/api/ips")
async def list_cached_ips(kv: KeyValueStore = Depends(get_store)):
    """Cached IP records from the last refresh runs, sorted by key."""
    records = []
    for key in kv.keys(IP_KEY_PREFIX):
        value = kv.get(key)
        if isinstance(value, dict):
            records.append(GeoRecord.from_store_dict(value).to_store_dict())
    return JSONResponse(content={
        "success": True,
        "last_update": kv.get(LAST_UPDATE_KEY),
        "count": len(records),
        "records": records,
    })


def _uptime_str() -> str:
    elapsed = time.monotonic() - _start_time
    days = int(elapsed // 86400)
    hours = int((elapsed % 86400) // 3600)
    if days > 0:
        return f"{days}d {hours}h"
    minutes = int((elapsed % 3600) // 60)
    return f"{hours}h {minutes}m"


@app.api_route("/api/status", methods=["GET", "HEAD"])
async def get_status(kv: KeyValueStore = Depends(get_store)):
    return JSONResponse(content={
        "version": APP_VERSION,
        "uptime": _uptime_str(),
        "database_loaded": resolver_handle.loaded,
        "cached_ips": len(kv.keys(IP_KEY_PREFIX)),
        "last_update": kv.get(LAST_UPDATE_KEY),
    })
