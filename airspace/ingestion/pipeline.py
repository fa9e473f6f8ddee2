"""
Poll orchestrator - drives one poll cycle from OpenSky to the display cache.

Cycle stages:
1. Gate: enforce the minimum interval between upstream requests
2. Token: obtain a bearer token from the TokenBroker
3. Fetch: request state vectors (one forced token refresh + retry on 401)
4. Reconcile: merge the snapshot into the ContactStore
5. Cache: publish the display list for read-only API calls

Any failure along the way degrades to the cached list or to a list derived
from stored Past contacts; poll_once() never raises.

The orchestrator does not schedule itself. An HTTP request, a cron job or
the optional background thread calls poll_once().
"""

import logging
import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Callable, List, Optional

from airspace.cache import DisplayCache
from airspace.config import display_timezone
from airspace.exceptions import RateLimitedError, UpstreamAuthError, UpstreamError, UpstreamUnavailableError
from airspace.ingestion.opensky_client import BoundingBox, OpenSkyClient, StateVector
from airspace.ingestion.token_broker import TokenBroker
from airspace.tracking.engine import ReconciliationEngine
from airspace.tracking.records import DisplayEntry, utcnow
from airspace.tracking.store import ContactStore, create_contact_store

logger = logging.getLogger(__name__)


@dataclass
class CycleMetrics:
    """What happened during one poll_once() call."""
    started_at: Optional[str] = None
    source: str = 'none'  # live, cache, fallback or throttled
    total_states: int = 0
    in_radius: int = 0
    filtered_by_category: int = 0
    records_written: int = 0
    displayed: int = 0
    token_refreshed: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class PollOrchestrator:
    """
    Runs poll cycles against OpenSky and keeps the display cache current.

    Args:
        client: OpenSky API client
        token_broker: access token source
        engine: reconciliation engine (also defines center and radius)
        store: contact store
        cache: display list cache
        min_interval: minimum seconds between upstream requests
        clock: Unix time source for the interval gate
        now: datetime source passed to the engine
    """

    def __init__(
        self,
        client: OpenSkyClient,
        token_broker: TokenBroker,
        engine: ReconciliationEngine,
        store: ContactStore,
        cache: Optional[DisplayCache] = None,
        min_interval: float = 6.0,
        clock: Callable[[], float] = time.time,
        now: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.token_broker = token_broker
        self.engine = engine
        self.store = store
        self.cache = cache or DisplayCache()
        self.min_interval = min_interval
        self._clock = clock
        self._now = now

        center = engine.geo_filter.center
        self.bbox = BoundingBox.from_center_radius(center[0], center[1], engine.geo_filter.radius_km)

        # Serializes fetch -> reconcile -> persist
        self._lock = threading.Lock()

        # State tracking
        self._last_request_time: float = 0
        self._poll_count = 0
        self._live_count = 0
        self._fallback_count = 0
        self._throttled_count = 0
        self._error_count = 0
        self._last_success_time: float = 0
        self.last_metrics = CycleMetrics()

        # Background polling
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, app_config) -> 'PollOrchestrator':
        """Wire all components from application configuration."""
        tz = display_timezone(app_config.display)
        store = create_contact_store(app_config.storage, tz=tz)
        store.load()
        return cls(
            client=OpenSkyClient.from_config(app_config.opensky),
            token_broker=TokenBroker.from_config(app_config.opensky),
            engine=ReconciliationEngine.from_config(app_config, display_tz=tz),
            store=store,
            cache=DisplayCache(ttl_seconds=app_config.polling.cache_ttl_seconds),
            min_interval=app_config.polling.rate_limit_seconds,
        )

    # -------------------------------------------------------------------------
    # Poll cycle
    # -------------------------------------------------------------------------

    def poll_once(self) -> List[DisplayEntry]:
        """Run one poll cycle and return the display list."""
        with self._lock:
            started = time.perf_counter()
            now = self._now()
            metrics = CycleMetrics(started_at=now.isoformat())
            self._poll_count += 1

            ts = self._clock()
            if self._last_request_time and ts - self._last_request_time < self.min_interval:
                logger.info('Rate limit: waiting for next request window, serving last list')
                self._throttled_count += 1
                metrics.source = 'throttled'
                entries = self.cache.peek()
                if entries is None:
                    entries = self.engine.build_fallback(self.store, now)
            else:
                self._last_request_time = ts
                entries = self._run_cycle(now, metrics)

            metrics.displayed = len(entries)
            metrics.duration_ms = round((time.perf_counter() - started) * 1000, 2)
            self.last_metrics = metrics
            return entries

    def _run_cycle(self, now: datetime, metrics: CycleMetrics) -> List[DisplayEntry]:
        try:
            states = self._fetch(metrics)
            if states is None:
                return self._fallback(now, metrics)

            entries = self.engine.reconcile(states, self.store, now)
        except RateLimitedError as e:
            logger.warning('Rate limit reached at OpenSky - using cached data')
            metrics.error = str(e)
            return self._fallback(now, metrics)
        except UpstreamError as e:
            self._error_count += 1
            logger.error(f'OpenSky unavailable: {e}')
            metrics.error = str(e)
            return self._fallback(now, metrics)
        except Exception as e:
            self._error_count += 1
            logger.exception(f'Poll cycle failed: {e}')
            metrics.error = str(e)
            return self._fallback(now, metrics)

        stats = self.engine.last_stats
        metrics.source = 'live'
        metrics.total_states = stats.total_states
        metrics.in_radius = stats.in_radius
        metrics.filtered_by_category = stats.filtered_by_category
        metrics.records_written = stats.records_written

        self.cache.set(entries)
        self._live_count += 1
        self._last_success_time = self._clock()
        logger.info(
            f'Poll: {stats.total_states} states, {stats.in_radius} in radius, '
            f'{stats.filtered_by_category} filtered by category, '
            f'{stats.records_written} records written, {len(entries)} displayed'
        )
        return entries

    def _fetch(self, metrics: CycleMetrics) -> Optional[List[StateVector]]:
        """
        Fetch a snapshot, refreshing the token once after a 401.

        Returns None when there is no token or no usable data.
        """
        token = self.token_broker.get_token()
        if not token:
            logger.warning('No OAuth token available - using fallback data')
            metrics.error = 'no access token'
            return None

        try:
            _, states = self.client.get_states(token, bbox=self.bbox)
        except UpstreamAuthError:
            logger.warning('401 from OpenSky - refreshing token and retrying once')
            metrics.token_refreshed = True
            token = self.token_broker.get_token(force_refresh=True)
            if not token:
                metrics.error = 'token refresh failed'
                return None
            try:
                _, states = self.client.get_states(token, bbox=self.bbox)
            except UpstreamAuthError as e:
                raise UpstreamUnavailableError(
                    'OpenSky rejected a freshly issued token', status_code=401
                ) from e

        if states is None:
            logger.info('No data from OpenSky - using fallback data')
            metrics.error = 'no state data'
            return None

        return states

    def _fallback(self, now: datetime, metrics: CycleMetrics) -> List[DisplayEntry]:
        """Cached list while fresh, otherwise stored Past contacts."""
        self._fallback_count += 1
        cached = self.cache.get()
        if cached is not None:
            metrics.source = 'cache'
            return cached
        metrics.source = 'fallback'
        return self.engine.build_fallback(self.store, now)

    def cached_or_poll(self) -> List[DisplayEntry]:
        """Display list for read-only callers: cache while fresh, else poll."""
        cached = self.cache.get()
        if cached is not None:
            return cached
        return self.poll_once()

    # -------------------------------------------------------------------------
    # Background polling
    # -------------------------------------------------------------------------

    def run_continuous(self, interval: float) -> None:
        """
        Poll on a fixed interval until stop() is called.

        This method blocks - use start_background() for non-blocking.
        """
        self._running = True
        self._stop_event.clear()
        logger.info(f'Starting continuous polling (interval={interval}s)')

        while self._running:
            self.poll_once()
            if self._stop_event.wait(interval):
                break

        self._running = False
        logger.info('Polling stopped')

    def start_background(self, interval: float) -> None:
        """Start polling in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning('Polling already running')
            return

        self._thread = threading.Thread(
            target=self.run_continuous,
            args=(interval,),
            daemon=True,
        )
        self._thread.start()
        logger.info('Background polling started')

    def stop(self) -> None:
        """Stop background polling."""
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    @property
    def last_request_time(self) -> float:
        return self._last_request_time

    @property
    def stats(self) -> dict:
        """Get orchestrator statistics."""
        return {
            'poll_count': self._poll_count,
            'live_count': self._live_count,
            'fallback_count': self._fallback_count,
            'throttled_count': self._throttled_count,
            'error_count': self._error_count,
            'last_request_time': self._last_request_time or None,
            'last_success_time': self._last_success_time or None,
            'min_interval': self.min_interval,
            'running': self._running,
            'last_cycle': self.last_metrics.to_dict(),
        }
