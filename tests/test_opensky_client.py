import pytest
import requests

from airspace.exceptions import (
    RateLimitedError,
    UpstreamAuthError,
    UpstreamUnavailableError,
)
from airspace.ingestion.opensky_client import BoundingBox, OpenSkyClient, StateVector

from conftest import CENTER, FakeResponse, FakeSession, state_array


def make_client(*responses):
    session = FakeSession(*responses)
    return OpenSkyClient(base_url="https://example.test/api/", session=session), session


def test_state_vector_from_array():
    sv = StateVector.from_array(state_array(callsign="DLH4AB  ", icao24="3C6444", category=4))

    assert sv.icao24 == "3c6444"
    assert sv.callsign == "DLH4AB"
    assert (sv.latitude, sv.longitude) == (48.40, 7.90)
    assert sv.baro_altitude == 1000.0
    assert sv.true_track == 90.0
    assert sv.category == 4


def test_state_vector_rejects_malformed_arrays():
    assert StateVector.from_array(["abc123", "X1"]) is None
    assert StateVector.from_array("not a list") is None
    assert StateVector.from_array(state_array(icao24=None)) is None


def test_state_vector_category_only_from_extended_field():
    short = state_array()[:17]
    assert StateVector.from_array(short).category is None
    assert StateVector.from_array(state_array(category=True)).category is None
    assert StateVector.from_array(state_array(category="3")).category is None


def test_bounding_box_covers_radius():
    bbox = BoundingBox.from_center_radius(*CENTER, 10)

    assert bbox.lat_min < CENTER[0] - 10 / 111.0
    assert bbox.lat_max > CENTER[0] + 10 / 111.0
    assert bbox.lon_min < CENTER[1] < bbox.lon_max
    assert set(bbox.to_params()) == {"lamin", "lamax", "lomin", "lomax"}


def test_get_states_sends_bearer_token_and_parses():
    payload = {"time": 1714759200, "states": [state_array(), ["short"]]}
    client, session = make_client(FakeResponse(200, payload))

    api_time, states = client.get_states("tok", BoundingBox.from_center_radius(*CENTER, 10))

    assert api_time == 1714759200
    assert [sv.callsign for sv in states] == ["DLH4AB"]
    method, url, kwargs = session.calls[0]
    assert url == "https://example.test/api/states/all"
    assert kwargs["headers"]["Authorization"] == "Bearer tok"
    assert kwargs["params"]["extended"] == 1
    assert "lamin" in kwargs["params"]
    assert client.request_count == 1


def test_empty_state_list_is_valid_data():
    client, _ = make_client(FakeResponse(200, {"time": 1, "states": []}))
    assert client.get_states("tok") == (1, [])


@pytest.mark.parametrize("payload", [{"time": 1, "states": None}, {"time": 1}])
def test_null_or_missing_states_means_no_data(payload):
    client, _ = make_client(FakeResponse(200, payload))
    assert client.get_states("tok") == (1, None)


def test_unauthorized_raises_auth_error():
    client, _ = make_client(FakeResponse(401))
    with pytest.raises(UpstreamAuthError) as exc:
        client.get_states("tok")
    assert exc.value.status_code == 401


def test_rate_limited_raises_distinct_error():
    client, _ = make_client(FakeResponse(429))
    with pytest.raises(RateLimitedError):
        client.get_states("tok")


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(503),
        FakeResponse(200, None, text="<html>"),
        FakeResponse(200, ["not", "an", "object"]),
        FakeResponse(200, {"time": 1, "states": "oops"}),
        requests.exceptions.Timeout("read timed out"),
        requests.exceptions.ConnectionError("refused"),
    ],
)
def test_upstream_failures_raise_unavailable(response):
    client, _ = make_client(response)
    with pytest.raises(UpstreamUnavailableError):
        client.get_states("tok")
    assert client.request_count == 1


def test_rate_limited_is_an_upstream_error_but_not_unavailable():
    assert not issubclass(RateLimitedError, UpstreamUnavailableError)
    assert not issubclass(UpstreamAuthError, UpstreamUnavailableError)


def test_check_connectivity_hits_site_root():
    client, session = make_client(FakeResponse(200))

    assert client.check_connectivity() == "OK"
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "https://example.test")
    assert kwargs["timeout"] == 5.0
    assert client.request_count == 0


@pytest.mark.parametrize(
    "response, expected",
    [
        (FakeResponse(503), "HTTP 503"),
        (requests.exceptions.ConnectionError("refused"), "Error: refused"),
    ],
)
def test_check_connectivity_reports_failures(response, expected):
    client, _ = make_client(response)
    assert client.check_connectivity() == expected
