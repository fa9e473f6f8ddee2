"""
OpenSky OAuth2 token broker.

Acquires an access token with the client-credentials grant and caches it:

    NoToken --grant ok--> Cached(token, expires_at) --expiry / 401--> NoToken

Lookup order: in-memory cache, optional durable cache file (shared across
process restarts), identity endpoint. The cached lifetime is
max(300s, expires_in - 60s) so the token is refreshed shortly before
OpenSky expires it.

The broker never retries on its own. After a 401 the caller asks for
get_token(force_refresh=True) exactly once.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional

import requests

from airspace.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MIN_TOKEN_TTL_SECONDS = 300
EXPIRY_MARGIN_SECONDS = 60
DEFAULT_EXPIRES_IN = 3600


def token_ttl(expires_in: Optional[int]) -> int:
    """Cache lifetime for a token reported to live `expires_in` seconds."""
    try:
        expires = int(expires_in) if expires_in is not None else DEFAULT_EXPIRES_IN
    except (TypeError, ValueError):
        expires = DEFAULT_EXPIRES_IN
    return max(MIN_TOKEN_TTL_SECONDS, expires - EXPIRY_MARGIN_SECONDS)


class TokenBroker:
    """
    Client-credentials token cache for the OpenSky API.

    Args:
        client_id: OpenSky API client id
        client_secret: OpenSky API client secret
        auth_url: identity endpoint (OpenID Connect token URL)
        timeout: request timeout in seconds
        cache_file: optional JSON file used as a second cache layer
        session: requests session (injectable for tests)
        clock: time source returning Unix seconds
    """

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        auth_url: str,
        timeout: float = 60.0,
        cache_file: Optional[str] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.auth_url = auth_url
        self.timeout = timeout
        self.cache_file = Path(cache_file) if cache_file else None
        self.session = session or requests.Session()
        self._clock = clock

        self._token: Optional[str] = None
        self._expires_at: float = 0
        self._grant_count = 0
        self._failure_count = 0
        self._warned_missing = False

    @classmethod
    def from_config(cls, opensky_config) -> 'TokenBroker':
        return cls(
            client_id=opensky_config.client_id,
            client_secret=opensky_config.client_secret,
            auth_url=opensky_config.auth_url,
            timeout=opensky_config.timeout_seconds,
            cache_file=opensky_config.token_cache_file,
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def is_cached(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    def get_token(self, force_refresh: bool = False) -> Optional[str]:
        """
        Return a valid access token, or None when none can be obtained.

        None means the caller has to fall back to cached or stored data.
        """
        if force_refresh:
            self.invalidate()
        elif self.is_cached:
            return self._token
        else:
            cached = self._read_cache_file()
            if cached:
                return cached

        try:
            return self._request_token()
        except ConfigurationError as e:
            if not self._warned_missing:
                logger.error(str(e))
                self._warned_missing = True
            return None

    def invalidate(self) -> None:
        """Drop the token from every cache layer."""
        self._token = None
        self._expires_at = 0
        if self.cache_file and self.cache_file.exists():
            try:
                self.cache_file.unlink()
            except OSError as e:
                logger.warning(f'Could not remove token cache {self.cache_file}: {e}')

    def _request_token(self) -> Optional[str]:
        if not self.has_credentials:
            raise ConfigurationError(
                'OpenSky API credentials missing. Set OPENSKY_CLIENT_ID and OPENSKY_CLIENT_SECRET.'
            )

        data = {
            'grant_type': 'client_credentials',
            'client_id': self.client_id,
            'client_secret': self.client_secret,
        }
        headers = {'Content-Type': 'application/x-www-form-urlencoded'}

        try:
            response = self.session.post(
                self.auth_url,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.HTTPError as e:
            self._failure_count += 1
            logger.error(f'OpenSky token request rejected: {e.response.status_code if e.response is not None else e}')
            return None
        except requests.exceptions.RequestException as e:
            self._failure_count += 1
            logger.error(f'OpenSky token request failed: {e}')
            return None
        except ValueError as e:
            self._failure_count += 1
            logger.error(f'OpenSky token response is not JSON: {e}')
            return None

        token = payload.get('access_token') if isinstance(payload, dict) else None
        if not token:
            self._failure_count += 1
            logger.error('No access token in OpenSky token response')
            return None

        ttl = token_ttl(payload.get('expires_in'))
        self._store(token, self._clock() + ttl)
        self._grant_count += 1
        logger.info(f'OAuth token obtained, cached for {ttl}s')
        return token

    def _store(self, token: str, expires_at: float) -> None:
        self._token = token
        self._expires_at = expires_at
        if not self.cache_file:
            return
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.cache_file.with_name(self.cache_file.name + '.tmp')
            tmp.write_text(json.dumps({'access_token': token, 'expires_at': expires_at}))
            os.replace(tmp, self.cache_file)
        except OSError as e:
            logger.warning(f'Could not write token cache {self.cache_file}: {e}')

    def _read_cache_file(self) -> Optional[str]:
        if not self.cache_file or not self.cache_file.exists():
            return None
        try:
            data = json.loads(self.cache_file.read_text())
            token = data['access_token']
            expires_at = float(data['expires_at'])
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f'Ignoring unreadable token cache {self.cache_file}: {e}')
            return None
        if not token or self._clock() >= expires_at:
            return None
        self._token = token
        self._expires_at = expires_at
        logger.debug('Using OAuth token from durable cache')
        return token

    @property
    def stats(self) -> dict:
        return {
            'has_credentials': self.has_credentials,
            'token_cached': self.is_cached,
            'expires_in': max(0, int(self._expires_at - self._clock())) if self.is_cached else 0,
            'grants': self._grant_count,
            'failures': self._failure_count,
            'durable_cache': str(self.cache_file) if self.cache_file else None,
        }
