"""
Exception hierarchy for Airspace Monitor.

Every failure in the poll cycle is recoverable. These types exist so the
orchestrator can tell the cases apart (retry once, log as rate limited,
fall back to stored data) without inspecting HTTP status codes itself.
"""

from typing import Optional


class AirspaceError(Exception):
    """Base exception for all Airspace Monitor errors."""


class ConfigurationError(AirspaceError):
    """Required configuration (e.g. OpenSky client credentials) is missing."""


class UpstreamError(AirspaceError):
    """The OpenSky API could not deliver a usable snapshot."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class UpstreamAuthError(UpstreamError):
    """OpenSky rejected the bearer token (HTTP 401)."""


class UpstreamUnavailableError(UpstreamError):
    """Timeout, connection failure, 5xx or malformed response body."""


class RateLimitedError(UpstreamError):
    """OpenSky answered with HTTP 429."""


class PersistenceError(AirspaceError):
    """Reading or writing the contact backing store failed."""


class MalformedRecordError(AirspaceError):
    """A stored contact record could not be interpreted."""
