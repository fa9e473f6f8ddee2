"""
Configuration management for Airspace Monitor.

Settings are resolved once at startup with this priority:
1. config.json (optional, shared with the display client)
2. Environment variables (.env is loaded via python-dotenv)
3. Built-in defaults

The resulting AppConfig is immutable and injected into the core components
as plain parameters.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_FILE_CANDIDATES = ('config.json',)

DEFAULT_TITLE = 'Luftraum Friesenheim (Baden), Koordinaten und Umkreis (start 10 km)'


def _lookup(data: Dict[str, Any], dotted: str) -> Any:
    """Fetch a nested value like 'monitoring.coordinates.lat' from a dict."""
    node: Any = data
    for part in dotted.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _parse_allowlist(value: Any) -> FrozenSet[int]:
    """Parse '3,4,5,6' or [3, 4, 5, 6] into a set of category codes."""
    if value is None or value == '':
        return frozenset()
    if isinstance(value, str):
        items = [v.strip() for v in value.split(',') if v.strip()]
    else:
        items = list(value)
    result = set()
    for item in items:
        try:
            result.add(int(item))
        except (TypeError, ValueError):
            logger.warning(f'Ignoring invalid category code in allowlist: {item!r}')
    return frozenset(result)


def load_config_file(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Read config.json if present.

    Returns an empty dict when no file exists or it cannot be parsed;
    a broken config file must not prevent startup.
    """
    candidates = [path] if path else list(CONFIG_FILE_CANDIDATES)
    for candidate in candidates:
        file_path = Path(candidate)
        if not file_path.is_file():
            continue
        try:
            with file_path.open(encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning(f'Could not read {file_path}, using defaults: {e}')
            return {}
        if not isinstance(data, dict):
            logger.warning(f'{file_path} does not contain an object, using defaults')
            return {}
        logger.info(f'Configuration loaded from {file_path}')
        return data
    return {}


@dataclass(frozen=True)
class OpenSkyConfig:
    """OpenSky API and identity endpoint configuration."""
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    base_url: str = 'https://opensky-network.org/api'
    auth_url: str = (
        'https://auth.opensky-network.org/auth/realms/opensky-network'
        '/protocol/openid-connect/token'
    )
    # OpenSky is known to be slow; both the token and the states call get 60s
    timeout_seconds: float = 60.0
    token_cache_file: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


@dataclass(frozen=True)
class MonitoringConfig:
    """Monitoring center and radius."""
    latitude: float = 48.3705
    longitude: float = 7.8819
    radius_km: float = 10.0

    @property
    def center(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class FilteringConfig:
    """Aircraft category allowlist and display size."""
    category_allowlist: FrozenSet[int] = frozenset({3, 4, 5, 6})
    max_display_count: int = 7


@dataclass(frozen=True)
class RetentionConfig:
    """How long and how many Past contacts are kept."""
    max_past_records: int = 7
    past_retention_minutes: float = 10.0  # 0 disables the time cap


@dataclass(frozen=True)
class PollingConfig:
    """Upstream rate limiting and display list caching."""
    rate_limit_seconds: float = 6.0
    cache_ttl_seconds: float = 60.0
    poll_interval_seconds: float = 0.0  # 0 = no background thread
    poll_secret: Optional[str] = None


@dataclass(frozen=True)
class StorageConfig:
    """Contact store backend selection."""
    database_url: Optional[str] = None
    contacts_file: str = 'first_contacts.json'

    @property
    def backend(self) -> str:
        return 'sql' if self.database_url else 'file'


@dataclass(frozen=True)
class DisplayConfig:
    """Display client settings."""
    title: str = DEFAULT_TITLE
    language: str = 'de'
    timezone: str = 'Europe/Berlin'
    airlines_file: str = 'airlines.json'


def display_timezone(display: DisplayConfig) -> tzinfo:
    """Timezone for rendering first-contact times, UTC if unknown."""
    try:
        return ZoneInfo(display.timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning(f'Unknown timezone {display.timezone!r}, using UTC')
        return timezone.utc


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    opensky: OpenSkyConfig = field(default_factory=OpenSkyConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    filtering: FilteringConfig = field(default_factory=FilteringConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)

    # Flask settings
    port: int = 3000
    debug: bool = False


class _Resolver:
    """Resolve a setting from config.json, then the environment, then a default."""

    def __init__(self, file_data: Dict[str, Any]):
        self.file_data = file_data

    def get(self, json_key: Optional[str], env_keys: Tuple[str, ...], default: Any) -> Any:
        if json_key:
            value = _lookup(self.file_data, json_key)
            if value is not None and value != '':
                return value
        for env_key in env_keys:
            value = os.getenv(env_key)
            if value:
                return value
        return default

    def number(self, json_key: Optional[str], env_keys: Tuple[str, ...], default: float, cast=float):
        value = self.get(json_key, env_keys, default)
        try:
            return cast(value)
        except (TypeError, ValueError):
            logger.warning(f'Invalid value {value!r} for {json_key or env_keys[0]}, using {default}')
            return default


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load and validate all configuration."""
    load_dotenv()
    r = _Resolver(load_config_file(config_path))

    opensky = OpenSkyConfig(
        client_id=r.get(None, ('OPENSKY_CLIENT_ID', 'OPENSKY_USERNAME'), None),
        client_secret=r.get(None, ('OPENSKY_CLIENT_SECRET', 'OPENSKY_PASSWORD'), None),
        timeout_seconds=r.number(None, ('UPSTREAM_TIMEOUT_SECONDS',), 60.0),
        token_cache_file=r.get(None, ('TOKEN_CACHE_FILE',), None),
    )
    monitoring = MonitoringConfig(
        latitude=r.number('monitoring.coordinates.lat', ('LAT',), 48.3705),
        longitude=r.number('monitoring.coordinates.lon', ('LON',), 7.8819),
        radius_km=r.number('monitoring.radius', ('RADIUS',), 10.0),
    )
    filtering = FilteringConfig(
        category_allowlist=_parse_allowlist(
            r.get('filtering.categoryAllowlist', ('CATEGORY_ALLOWLIST',), '3,4,5,6')
        ),
        max_display_count=r.number('filtering.maxDisplayCount', ('MAX_DISPLAY_COUNT',), 7, int),
    )
    retention = RetentionConfig(
        max_past_records=r.number('data.maxPastRecords', ('MAX_PAST_RECORDS',), 7, int),
        past_retention_minutes=r.number(
            'data.pastRetentionMinutes', ('PAST_RETENTION_MINUTES',), 10.0
        ),
    )
    polling = PollingConfig(
        rate_limit_seconds=r.number('data.rateLimitDelaySeconds', ('RATE_LIMIT_SECONDS',), 6.0),
        cache_ttl_seconds=r.number('data.cacheTimeoutSeconds', ('CACHE_TTL_SECONDS',), 60.0),
        poll_interval_seconds=r.number(None, ('POLL_INTERVAL_SECONDS',), 0.0),
        poll_secret=r.get(None, ('POLL_SECRET', 'CRON_SECRET'), None),
    )
    storage = StorageConfig(
        database_url=r.get(None, ('DATABASE_URL',), None),
        contacts_file=r.get(None, ('CONTACTS_FILE',), 'first_contacts.json'),
    )
    display = DisplayConfig(
        title=r.get('display.title', ('DISPLAY_TITLE',), DEFAULT_TITLE),
        language=str(r.get('display.language', ('DISPLAY_LANGUAGE',), 'de')).lower(),
        timezone=r.get('display.timezone', ('DISPLAY_TIMEZONE',), 'Europe/Berlin'),
        airlines_file=r.get(None, ('AIRLINES_FILE',), 'airlines.json'),
    )

    return AppConfig(
        opensky=opensky,
        monitoring=monitoring,
        filtering=filtering,
        retention=retention,
        polling=polling,
        storage=storage,
        display=display,
        port=r.number('display.port', ('PORT',), 3000, int),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
    )


# Singleton instance
config = load_config()
