from datetime import datetime, timezone

import pytest
import requests

from airspace.ingestion.opensky_client import StateVector
from airspace.tracking.airlines import AirlineResolver
from airspace.tracking.engine import ReconciliationEngine
from airspace.tracking.geo import GeoFilter
from airspace.tracking.records import RetentionPolicy
from airspace.tracking.store import JsonFileContactStore

CENTER = (48.3705, 7.8819)
RADIUS_KM = 10.0
ALLOWLIST = {3, 4, 5, 6}

T0 = datetime(2024, 5, 3, 18, 0, tzinfo=timezone.utc)


def state_array(
    callsign="DLH4AB  ",
    lat=48.40,
    lon=7.90,
    altitude=1000.0,
    velocity=200.0,
    track=90.0,
    category=3,
    icao24="3c6444",
):
    """Build an OpenSky state vector array (extended format)."""
    return [
        icao24,
        callsign,
        "Germany",
        1714759198,
        1714759200,
        lon,
        lat,
        altitude,
        altitude is not None and altitude <= 0,
        velocity,
        track,
        0.0,
        None,
        altitude,
        "1000",
        False,
        0,
        category,
    ]


def state(**kwargs) -> StateVector:
    return StateVector.from_array(state_array(**kwargs))


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None and self.text is not None:
            raise ValueError("No JSON object could be decoded")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Stand-in for requests.Session returning queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        if not self.responses:
            raise AssertionError(f"Unexpected {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)


class Clock:
    """Manually advanced Unix time source."""

    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def geo_filter():
    return GeoFilter(CENTER, RADIUS_KM, ALLOWLIST)


@pytest.fixture
def resolver():
    return AirlineResolver({"DLH": "Lufthansa", "EZY": "easyJet"})


@pytest.fixture
def file_store(tmp_path):
    store = JsonFileContactStore(tmp_path / "first_contacts.json")
    store.load(T0)
    return store


@pytest.fixture
def engine(geo_filter, resolver):
    return ReconciliationEngine(
        geo_filter=geo_filter,
        resolver=resolver,
        retention=RetentionPolicy(),
        max_display_count=7,
        language="en",
    )
