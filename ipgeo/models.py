from __future__ import annotations

from dataclasses import dataclass, field

UNKNOWN = "Unknown"


@dataclass(frozen=True, slots=True)
class GeoRecord:
    """Country-level geolocation of one IP address.

    Name and code fields are never empty: missing values are stored as
    "Unknown" so every record has the same shape.
    """

    ip: str
    country: str = UNKNOWN
    continent: str = UNKNOWN
    iso_code: str = UNKNOWN
    is_eu: bool = False
    timestamp: int = 0  # epoch ms

    def to_geo_info(self) -> dict:
        """Serialize as the geoInfo object of the /api/ip response."""
        return {
            "country": self.country,
            "continent": self.continent,
            "isEU": self.is_eu,
            "countryCode": self.iso_code,
        }

    def to_store_dict(self) -> dict:
        return {
            "ip": self.ip,
            "country": self.country,
            "continent": self.continent,
            "iso_code": self.iso_code,
            "is_eu": self.is_eu,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_store_dict(cls, d: dict) -> GeoRecord:
        return cls(
            ip=d.get("ip", ""),
            country=d.get("country") or UNKNOWN,
            continent=d.get("continent") or UNKNOWN,
            iso_code=d.get("iso_code") or UNKNOWN,
            is_eu=bool(d.get("is_eu", False)),
            timestamp=int(d.get("timestamp", 0)),
        )


@dataclass(slots=True)
class RefreshResult:
    """Summary of one refresh run. processed + errors == total always holds."""

    total: int = 0
    processed: int = 0
    errors: int = 0
    last_update: int = 0  # epoch ms
    failed: list[str] = field(default_factory=list)  # raw IPs that did not resolve or persist

    def to_api_dict(self) -> dict:
        return {
            "success": True,
            "total": self.total,
            "processed": self.processed,
            "errors": self.errors,
            "last_update": self.last_update,
        }
