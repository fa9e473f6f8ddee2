from datetime import timezone

import pytest

from airspace.app import create_app
from airspace.cache import DisplayCache
from airspace.config import AppConfig, DisplayConfig, PollingConfig
from airspace.ingestion.opensky_client import OpenSkyClient
from airspace.ingestion.pipeline import PollOrchestrator
from airspace.ingestion.token_broker import TokenBroker
from airspace.tracking.engine import ReconciliationEngine
from airspace.tracking.records import ContactRecord, ContactStatus
from airspace.tracking.store import JsonFileContactStore

from conftest import T0, FakeResponse, FakeSession, state_array


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        display=DisplayConfig(
            title="Test Airspace",
            timezone="UTC",
            airlines_file=str(tmp_path / "airlines.json"),
        ),
        polling=PollingConfig(poll_secret="s3cret"),
    )


@pytest.fixture
def sessions():
    return FakeSession(), FakeSession()


@pytest.fixture
def orchestrator(app_config, sessions, tmp_path, clock):
    auth, api = sessions
    store = JsonFileContactStore(tmp_path / "first_contacts.json")
    store.load(T0)
    store.upsert("EZY12", ContactRecord(first_time=T0, status=ContactStatus.PAST, direction="SW"))
    return PollOrchestrator(
        client=OpenSkyClient(session=api),
        token_broker=TokenBroker("id", "secret", "https://auth.example.test/token", session=auth, clock=clock),
        engine=ReconciliationEngine.from_config(app_config, display_tz=timezone.utc),
        store=store,
        cache=DisplayCache(clock=clock),
        clock=clock,
        now=lambda: T0,
    )


@pytest.fixture
def client(app_config, orchestrator):
    app = create_app(app_config=app_config, orchestrator=orchestrator, start_polling=False)
    app.config["TESTING"] = True
    return app.test_client()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_create_app_configures_logging(app_config, orchestrator, monkeypatch):
    calls = []
    monkeypatch.setattr("airspace.app.configure_logging", calls.append)

    create_app(app_config=app_config, orchestrator=orchestrator, start_polling=False)

    assert calls == [app_config.debug]


def test_unknown_route_returns_json_404(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Not found"}


def test_config_endpoint(client):
    data = client.get("/api/config").get_json()

    assert data == {
        "title": "Test Airspace",
        "coordinates": {"lat": 48.3705, "lon": 7.8819},
        "radius": 10.0,
    }


def test_cors_headers_on_api(client):
    response = client.get("/api/config", headers={"Origin": "http://display.local"})
    assert response.headers["Access-Control-Allow-Origin"] in ("*", "http://display.local")


def test_aircraft_endpoint_live(client, sessions):
    auth, api = sessions
    auth.queue(FakeResponse(200, {"access_token": "tok", "expires_in": 3600}))
    api.queue(FakeResponse(200, {"time": 1, "states": [state_array(track=45)]}))

    data = client.get("/api/aircraft").get_json()

    assert data["title"] == "Test Airspace"
    assert data["radius"] == 10.0
    assert "timestamp" in data
    assert data["aircraft"][0] == {
        "time": "18:00",
        "callsign": "Lufthansa",
        "code": "DLH4AB",
        "direction": "NO",
        "status": "Im Luftraum",
        "altitude": 1000.0,
        "speed": 200.0,
        "distance": 3.5,
    }
    assert data["aircraft"][1]["code"] == "EZY12"
    assert data["aircraft"][1]["status"] == "Vergangen"

    # Second request is served from the cache
    client.get("/api/aircraft")
    assert len(api.calls) == 1


def test_aircraft_endpoint_falls_back_to_stored_contacts(client, sessions):
    auth, api = sessions
    auth.queue(FakeResponse(200, {"access_token": "tok", "expires_in": 3600}))
    api.queue(FakeResponse(503))

    response = client.get("/api/aircraft")

    assert response.status_code == 200
    aircraft = response.get_json()["aircraft"]
    assert [a["code"] for a in aircraft] == ["EZY12"]
    assert aircraft[0]["direction"] == "SW"
    assert aircraft[0]["altitude"] == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"headers": {"X-Poll-Token": "wrong"}},
        {"query_string": {"token": "wrong"}},
    ],
)
def test_poll_requires_secret(client, sessions, kwargs):
    response = client.post("/api/poll", **kwargs)

    assert response.status_code == 401
    assert sessions[1].calls == []


@pytest.mark.parametrize(
    "kwargs",
    [
        {"headers": {"X-Poll-Token": "s3cret"}},
        {"headers": {"Authorization": "Bearer s3cret"}},
        {"query_string": {"token": "s3cret"}},
    ],
)
def test_poll_runs_cycle(client, sessions, kwargs):
    auth, api = sessions
    auth.queue(FakeResponse(200, {"access_token": "tok", "expires_in": 3600}))
    api.queue(FakeResponse(200, {"time": 1, "states": [state_array()]}))

    response = client.get("/api/poll", **kwargs)

    assert response.status_code == 200
    data = response.get_json()
    assert data["success"] is True
    assert data["aircraft_count"] == 2
    assert data["metrics"]["source"] == "live"
    assert data["metrics"]["in_radius"] == 1


def test_debug_endpoint(client, sessions):
    sessions[1].queue(FakeResponse(200))

    data = client.get("/api/debug").get_json()

    assert data["openskyConnectivity"] == "OK"
    assert data["hasOpenSkyCredentials"] is False
    assert data["storageBackend"] == "file"
    assert data["lastRequestTime"] == "never"
    assert data["cacheStatus"] == {"aircraftCached": False, "tokenCached": False}
    assert data["store"]["records"] == 1
    assert data["orchestrator"]["poll_count"] == 0
