"""
OpenSky Network API client.

Handles communication with the OpenSky REST API, including:
- Bearer token authentication (token supplied by TokenBroker)
- Bounding box queries for geographic pre-filtering
- Mapping HTTP failures onto the airspace exception taxonomy

OpenSky state vector format (array indices):
0: icao24          - ICAO24 hex address
1: callsign        - Callsign (8 chars max)
2: origin_country  - Country of registration
3: time_position   - Unix timestamp of last position update
4: last_contact    - Unix timestamp of last message
5: longitude       - WGS84 longitude
6: latitude        - WGS84 latitude
7: baro_altitude   - Barometric altitude (meters)
8: on_ground       - Boolean
9: velocity        - Ground speed (m/s)
10: true_track     - Track angle (degrees, 0=north)
11: vertical_rate  - Vertical rate (m/s)
12: sensors        - Sensor IDs (array)
13: geo_altitude   - Geometric altitude (meters)
14: squawk         - Transponder code
15: spi            - Special position indicator
16: position_source - 0=ADS-B, 1=ASTERIX, 2=MLAT, 3=FLARM
17: category       - Aircraft category (only with extended=1)
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional, List, Tuple, Any
from urllib.parse import urlsplit

import requests

from airspace.exceptions import (
    RateLimitedError,
    UpstreamAuthError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

USER_AGENT = 'AirspaceMonitor/1.0'


@dataclass
class BoundingBox:
    """
    Geographic bounding box for API queries.

    OpenSky expects: lamin, lomin, lamax, lomax
    (latitude min, longitude min, latitude max, longitude max)
    """
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    @classmethod
    def from_center_radius(
        cls,
        center_lat: float,
        center_lon: float,
        radius_km: float
    ) -> 'BoundingBox':
        """
        Create bounding box from center point and radius.

        Uses approximate conversion: 1 degree = 111 km at equator.
        Adjusts for latitude to account for longitude convergence.
        The box is padded slightly; the exact radius test happens later.
        """
        padded = radius_km * 1.05
        lat_delta = padded / 111.0
        cos_lat = max(abs(math.cos(math.radians(center_lat))), 0.01)
        lon_delta = padded / (111.0 * cos_lat)

        return cls(
            lat_min=max(center_lat - lat_delta, -90.0),
            lat_max=min(center_lat + lat_delta, 90.0),
            lon_min=max(center_lon - lon_delta, -180.0),
            lon_max=min(center_lon + lon_delta, 180.0),
        )

    def to_params(self) -> dict:
        """Convert to OpenSky API query parameters."""
        return {
            'lamin': round(self.lat_min, 4),
            'lamax': round(self.lat_max, 4),
            'lomin': round(self.lon_min, 4),
            'lomax': round(self.lon_max, 4),
        }


@dataclass
class StateVector:
    """
    Parsed state vector from OpenSky API.

    Normalizes the raw array format into a typed dataclass.
    All values may be None if not reported by the aircraft.
    """
    icao24: str
    callsign: Optional[str]
    longitude: Optional[float]
    latitude: Optional[float]
    baro_altitude: Optional[float]
    on_ground: bool
    velocity: Optional[float]
    true_track: Optional[float]
    category: Optional[int] = None

    @classmethod
    def from_array(cls, arr: List[Any]) -> Optional['StateVector']:
        """
        Parse OpenSky state vector array into StateVector object.

        Returns None if the array is malformed or missing required fields.
        """
        if not isinstance(arr, (list, tuple)) or len(arr) < 17:
            return None

        icao24 = arr[0]
        if not icao24 or not isinstance(icao24, str):
            return None

        # Normalize callsign (strip whitespace, handle None)
        callsign = arr[1] if isinstance(arr[1], str) else None
        if callsign:
            callsign = callsign.strip() or None

        category = arr[17] if len(arr) > 17 else None
        if isinstance(category, bool) or not isinstance(category, int):
            category = None

        return cls(
            icao24=icao24.lower(),
            callsign=callsign,
            longitude=_float_or_none(arr[5]),
            latitude=_float_or_none(arr[6]),
            baro_altitude=_float_or_none(arr[7]),
            on_ground=bool(arr[8]),
            velocity=_float_or_none(arr[9]),
            true_track=_float_or_none(arr[10]),
            category=category,
        )


def _float_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class OpenSkyClient:
    """
    Client for the OpenSky /states/all endpoint.

    Raises:
        UpstreamAuthError: token rejected (401)
        RateLimitedError: 429
        UpstreamUnavailableError: timeout, connection error, other non-2xx,
            undecodable body
    """

    def __init__(
        self,
        base_url: str = 'https://opensky-network.org/api',
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.last_request_time: float = 0
        self.request_count: int = 0

    @classmethod
    def from_config(cls, opensky_config) -> 'OpenSkyClient':
        """Create client from the OpenSky section of the configuration."""
        return cls(
            base_url=opensky_config.base_url,
            timeout=opensky_config.timeout_seconds,
        )

    def check_connectivity(self, timeout: float = 5.0) -> str:
        """
        Check that the OpenSky site answers at all.

        Returns 'OK' or a short description of the failure. Never raises
        and does not count as an API request.
        """
        parts = urlsplit(self.base_url)
        url = f'{parts.scheme}://{parts.netloc}'
        try:
            response = self.session.get(url, headers={'User-Agent': USER_AGENT}, timeout=timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f'OpenSky connectivity check failed: {e}')
            return f'Error: {e}'
        if response.status_code >= 400:
            return f'HTTP {response.status_code}'
        return 'OK'

    def get_states(
        self,
        token: str,
        bbox: Optional[BoundingBox] = None,
    ) -> Tuple[int, Optional[List[StateVector]]]:
        """
        Fetch current state vectors from OpenSky.

        Args:
            token: OAuth bearer token
            bbox: Optional bounding box to filter by geography

        Returns:
            Tuple of (api_timestamp, list of StateVectors). The list is None
            when the response carries no state list at all (no usable data),
            and empty when OpenSky explicitly reports no aircraft.
        """
        url = f'{self.base_url}/states/all'
        params = {'extended': 1}
        if bbox:
            params.update(bbox.to_params())

        headers = {
            'Authorization': f'Bearer {token}',
            'User-Agent': USER_AGENT,
        }

        logger.debug(f'Fetching states: {url} params={params}')

        try:
            response = self.session.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.error('OpenSky API timeout')
            raise UpstreamUnavailableError(f'OpenSky timeout: {e}') from e
        except requests.exceptions.RequestException as e:
            logger.error(f'OpenSky request failed: {e}')
            raise UpstreamUnavailableError(f'OpenSky request failed: {e}') from e
        finally:
            self.last_request_time = time.time()
            self.request_count += 1

        status = response.status_code
        if status == 401:
            raise UpstreamAuthError('OpenSky rejected the access token', status_code=401)
        if status == 429:
            logger.warning('OpenSky rate limit exceeded')
            raise RateLimitedError('OpenSky rate limit exceeded', status_code=429)
        if status < 200 or status >= 300:
            logger.error(f'OpenSky API error: {status}')
            raise UpstreamUnavailableError(f'OpenSky returned HTTP {status}', status_code=status)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(f'OpenSky returned invalid JSON: {e}') from e
        if not isinstance(data, dict):
            raise UpstreamUnavailableError('OpenSky response is not an object')

        api_time = data.get('time') or int(time.time())
        states_raw = data.get('states')
        if states_raw is None:
            logger.info('OpenSky response contains no state list')
            return api_time, None
        if not isinstance(states_raw, list):
            raise UpstreamUnavailableError('OpenSky states field is not a list')

        logger.info(f'Received {len(states_raw)} state vectors from OpenSky')

        states = []
        for arr in states_raw:
            sv = StateVector.from_array(arr)
            if sv:
                states.append(sv)

        logger.debug(f'Parsed {len(states)} valid state vectors')

        return api_time, states
