import pytest

from ipgeo.resolver import GeoResolver
from ipgeo.validation import is_valid_ip

SAMPLE_DB = {
    "8.8.8.8": {
        "country": {"iso_code": "US", "names": {"en": "United States", "zh-CN": "美国"}},
        "continent": {"code": "NA", "names": {"en": "North America", "zh-CN": "北美洲"}},
    },
    "1.1.1.1": {
        "country": {"iso_code": "AU", "names": {"en": "Australia"}},
        "continent": {"code": "OC", "names": {"en": "Oceania"}},
    },
    "2.2.2.2": {
        "country": {
            "iso_code": "FR",
            "is_in_european_union": True,
            "names": {"en": "France", "zh-CN": "法国"},
        },
        "continent": {"code": "EU", "names": {"en": "Europe"}},
    },
    "2001:db8::1": {
        "continent": {"code": "EU", "names": {"de": "Europa"}},
    },
}


class FakeDecoder:
    """Stands in for maxminddb.Reader: dict lookups, ValueError on bad input."""

    def __init__(self, data=None):
        self.data = SAMPLE_DB if data is None else data
        self.calls = []
        self.closed = False

    def get(self, ip):
        self.calls.append(ip)
        if not is_valid_ip(ip):
            raise ValueError(f"'{ip}' does not appear to be an IPv4 or IPv6 address.")
        return self.data.get(ip)

    def close(self):
        self.closed = True


@pytest.fixture
def decoder():
    return FakeDecoder()


@pytest.fixture
def resolver(decoder):
    return GeoResolver(decoder, locales=("en",))
