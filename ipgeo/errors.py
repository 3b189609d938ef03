from __future__ import annotations


class GeoServiceError(Exception):
    """Base error. Carries a machine-readable kind and the HTTP status to answer with."""

    kind = "internal_error"
    status_code = 500


class ValidationError(GeoServiceError):
    """Malformed IP literal supplied by the caller."""

    kind = "validation_error"
    status_code = 400


class DownloadError(GeoServiceError):
    """The geolocation database could not be downloaded."""

    kind = "download_error"


class DatabaseIOError(GeoServiceError):
    """The local database file could not be written, read or opened."""

    kind = "database_io_error"


class UpstreamFetchError(GeoServiceError):
    """An external HTTP source (public IP service, IP list) failed after retries."""

    kind = "upstream_fetch_error"


class StoreError(GeoServiceError):
    """A key-value store read or write failed."""

    kind = "store_error"


class ServiceNotReady(GeoServiceError):
    """Shared resources (HTTP client) are not set up yet, e.g. outside the app lifespan."""

    kind = "not_ready"
    status_code = 503
