import json
from datetime import timezone

import pytest

from airspace.config import DisplayConfig, display_timezone, load_config

ENV_KEYS = (
    "LAT", "LON", "RADIUS", "CATEGORY_ALLOWLIST", "MAX_DISPLAY_COUNT",
    "DATABASE_URL", "POLL_SECRET", "CRON_SECRET", "DISPLAY_LANGUAGE",
    "OPENSKY_CLIENT_ID", "OPENSKY_CLIENT_SECRET", "OPENSKY_USERNAME", "OPENSKY_PASSWORD",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "missing.json"))

    assert cfg.monitoring.center == (48.3705, 7.8819)
    assert cfg.monitoring.radius_km == 10.0
    assert cfg.filtering.category_allowlist == frozenset({3, 4, 5, 6})
    assert cfg.filtering.max_display_count == 7
    assert cfg.retention.max_past_records == 7
    assert cfg.polling.rate_limit_seconds == 6.0
    assert cfg.polling.cache_ttl_seconds == 60.0
    assert cfg.storage.backend == "file"
    assert cfg.display.language == "de"
    assert not cfg.opensky.has_credentials


def test_environment_overrides_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("LAT", "52.52")
    monkeypatch.setenv("RADIUS", "25")
    monkeypatch.setenv("CATEGORY_ALLOWLIST", "3, 4, x")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///contacts.db")
    monkeypatch.setenv("OPENSKY_USERNAME", "legacy-id")
    monkeypatch.setenv("OPENSKY_CLIENT_SECRET", "secret")
    monkeypatch.setenv("CRON_SECRET", "cron")

    cfg = load_config(str(tmp_path / "missing.json"))

    assert cfg.monitoring.latitude == 52.52
    assert cfg.monitoring.radius_km == 25.0
    assert cfg.filtering.category_allowlist == frozenset({3, 4})
    assert cfg.storage.backend == "sql"
    assert cfg.opensky.client_id == "legacy-id"
    assert cfg.opensky.has_credentials
    assert cfg.polling.poll_secret == "cron"


def test_config_file_takes_priority(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "monitoring": {"coordinates": {"lat": 50.0, "lon": 8.0}, "radius": 5},
        "filtering": {"categoryAllowlist": [2, 3], "maxDisplayCount": 5},
        "data": {"maxPastRecords": 3, "pastRetentionMinutes": 0},
        "display": {"title": "Frankfurt", "language": "EN", "port": 8080},
    }))
    monkeypatch.setenv("LAT", "1.0")

    cfg = load_config(str(path))

    assert cfg.monitoring.center == (50.0, 8.0)
    assert cfg.monitoring.radius_km == 5.0
    assert cfg.filtering.category_allowlist == frozenset({2, 3})
    assert cfg.filtering.max_display_count == 5
    assert cfg.retention.max_past_records == 3
    assert cfg.retention.past_retention_minutes == 0
    assert cfg.display.title == "Frankfurt"
    assert cfg.display.language == "en"
    assert cfg.port == 8080


def test_invalid_numbers_fall_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("MAX_DISPLAY_COUNT", "lots")
    cfg = load_config(str(tmp_path / "missing.json"))
    assert cfg.filtering.max_display_count == 7


def test_broken_config_file_is_ignored(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{broken")
    assert load_config(str(path)).monitoring.radius_km == 10.0


def test_display_timezone():
    assert str(display_timezone(DisplayConfig(timezone="Europe/Berlin"))) == "Europe/Berlin"
    assert display_timezone(DisplayConfig(timezone="Not/AZone")) is timezone.utc
