"""
Reconciliation engine - merges each poll's snapshot into the contact store.

Per poll:
1. Prune Past records outside the retention window, so an aircraft that
   reappears after eviction starts a new tracking episode. Aircraft in the
   snapshot are exempt from the count cap
2. Filter the snapshot to the radius, then to the category allowlist
3. Create or update one ContactRecord per eligible aircraft
4. Flip Active records missing from the snapshot to Past
5. Prune again with the retention policy
6. Build the display list: live entries plus Past placeholders,
   deduplicated, Active first, newest first_time first, truncated
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from airspace.tracking.airlines import AIRLINE_NAMES, AirlineResolver
from airspace.tracking.geo import GeoFilter, degrees_to_direction, direction_labels
from airspace.tracking.records import (
    NO_DIRECTION,
    ContactRecord,
    ContactStatus,
    DisplayEntry,
    RetentionPolicy,
    ensure_utc,
    status_labels,
    utcnow,
)
from airspace.tracking.store import ContactStore

logger = logging.getLogger(__name__)


@dataclass
class ReconcileStats:
    """Counters for one reconcile call."""
    total_states: int = 0
    in_radius: int = 0
    filtered_by_category: int = 0
    eligible: int = 0
    records_written: int = 0
    marked_past: int = 0
    pruned: int = 0
    displayed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def tracking_key(state: Any) -> str:
    """Callsign used as the contact key, ICAO24 when none is broadcast."""
    callsign = (getattr(state, 'callsign', None) or '').strip()
    if callsign:
        return callsign
    icao24 = (getattr(state, 'icao24', None) or '').strip()
    return icao24.upper() or 'UNKNOWN'


def _number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def _observed_status(state: Any) -> ContactStatus:
    """Active while airborne, Past once on or near the ground."""
    altitude = _number(getattr(state, 'baro_altitude', None))
    return ContactStatus.ACTIVE if altitude > 0 else ContactStatus.PAST


def _display_order(entry: DisplayEntry):
    return (0 if entry.is_active else 1, -entry.first_seen.timestamp(), entry.code)


class ReconciliationEngine:
    """
    Merge raw state vectors into the ContactStore and derive the display list.

    Args:
        geo_filter: radius and category eligibility
        resolver: callsign prefix to airline name
        retention: which Past records are kept
        max_display_count: display list length cap
        language: label set for directions and statuses ('de' or 'en')
        display_tz: timezone used to render first_time as HH:MM
    """

    def __init__(
        self,
        geo_filter: GeoFilter,
        resolver: Optional[AirlineResolver] = None,
        retention: Optional[RetentionPolicy] = None,
        max_display_count: int = 7,
        language: str = 'de',
        display_tz: tzinfo = timezone.utc,
    ):
        self.geo_filter = geo_filter
        self.resolver = resolver if resolver is not None else AirlineResolver(AIRLINE_NAMES)
        self.retention = retention or RetentionPolicy()
        self.max_display_count = max_display_count
        self.direction_labels: Sequence[str] = direction_labels(language)
        self.status_labels = status_labels(language)
        self.display_tz = display_tz
        self.last_stats = ReconcileStats()

    @classmethod
    def from_config(cls, app_config, display_tz: tzinfo = timezone.utc) -> 'ReconciliationEngine':
        """Create an engine from application configuration."""
        return cls(
            geo_filter=GeoFilter(
                app_config.monitoring.center,
                app_config.monitoring.radius_km,
                app_config.filtering.category_allowlist,
            ),
            resolver=AirlineResolver.from_file(app_config.display.airlines_file),
            retention=RetentionPolicy.from_minutes(
                app_config.retention.max_past_records,
                app_config.retention.past_retention_minutes,
            ),
            max_display_count=app_config.filtering.max_display_count,
            language=app_config.display.language,
            display_tz=display_tz,
        )

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def reconcile(
        self,
        states: Iterable[Any],
        store: ContactStore,
        now: Optional[datetime] = None,
    ) -> List[DisplayEntry]:
        """
        Merge one snapshot into the store and return the display list.

        Running twice with the same snapshot and the same `now` yields the
        same list and leaves the store unchanged after the first run.
        """
        now = ensure_utc(now or utcnow())
        states = list(states)
        stats = ReconcileStats(total_states=len(states))

        in_radius = [sv for sv in states if self.geo_filter.within_radius(sv)]
        eligible = [sv for sv in in_radius if self.geo_filter.passes_category(sv)]
        stats.in_radius = len(in_radius)
        stats.eligible = len(eligible)
        stats.filtered_by_category = len(in_radius) - len(eligible)
        present = frozenset(tracking_key(sv) for sv in eligible)

        store.ensure_loaded(now)
        with store.batch():
            stats.pruned += len(store.prune(self.retention, now, present))

            live: List[DisplayEntry] = []
            seen = set()
            for sv in eligible:
                code = tracking_key(sv)
                status, written = self._observe(code, sv, store, now, repeat=code in seen)
                if written:
                    stats.records_written += 1
                seen.add(code)
                live.append(self._live_entry(code, sv, store.get(code), status))

            for code, record in store.items():
                if record.is_active and code not in seen:
                    record.status = ContactStatus.PAST
                    store.upsert(code, record)
                    stats.records_written += 1
                    stats.marked_past += 1
                    logger.debug(f'{code} left the airspace')

            stats.pruned += len(store.prune(self.retention, now, present))

            entries = self._assemble(live, store, now)

        stats.displayed = len(entries)
        self.last_stats = stats
        logger.debug(
            f'Reconciled {stats.total_states} states: {stats.in_radius} in radius, '
            f'{stats.filtered_by_category} filtered by category, {stats.displayed} displayed'
        )
        return entries

    def _observe(
        self, code: str, sv: Any, store: ContactStore, now: datetime, repeat: bool = False,
    ) -> Tuple[ContactStatus, bool]:
        """
        Create or update the record of one eligible aircraft.

        Returns the observed status and whether the record was written.
        """
        status = _observed_status(sv)
        heading = degrees_to_direction(getattr(sv, 'true_track', None), self.direction_labels)

        record = store.get(code)
        if record is None:
            record = ContactRecord(first_time=now, status=status, direction=heading)
            logger.info(f'New contact {code} ({status.value})')
        elif status is ContactStatus.ACTIVE and not record.direction:
            # First direction sticks for the rest of the episode
            record.direction = heading

        if repeat and record.is_active and status is ContactStatus.PAST:
            # Same callsign twice in one snapshot, the airborne report wins
            return status, False

        record.status = status
        record.last_seen_at = now
        if status is ContactStatus.ACTIVE:
            record.last_active_at = now

        store.upsert(code, record)
        return status, True

    # -------------------------------------------------------------------------
    # Display list
    # -------------------------------------------------------------------------

    def _time_of_day(self, moment: datetime) -> str:
        return moment.astimezone(self.display_tz).strftime('%H:%M')

    def _live_entry(
        self, code: str, sv: Any, record: ContactRecord, status: ContactStatus,
    ) -> DisplayEntry:
        distance = self.geo_filter.distance_to(sv) or 0.0
        direction = (
            record.direction
            or degrees_to_direction(getattr(sv, 'true_track', None), self.direction_labels)
            or NO_DIRECTION
        )
        return DisplayEntry(
            time=self._time_of_day(record.first_time),
            callsign=self.resolver.resolve(code),
            code=code,
            direction=direction,
            status=status,
            status_label=self.status_labels[status],
            altitude=_number(getattr(sv, 'baro_altitude', None)),
            speed=_number(getattr(sv, 'velocity', None)),
            distance=round(distance, 1),
            first_seen=record.first_time,
            live=True,
        )

    def _placeholder_entry(self, code: str, record: ContactRecord) -> DisplayEntry:
        return DisplayEntry(
            time=self._time_of_day(record.first_time),
            callsign=self.resolver.resolve(code),
            code=code,
            direction=record.direction or NO_DIRECTION,
            status=ContactStatus.PAST,
            status_label=self.status_labels[ContactStatus.PAST],
            altitude=0,
            speed=0,
            distance=0,
            first_seen=record.first_time,
            live=False,
        )

    def _finalize(self, entries: Iterable[DisplayEntry]) -> List[DisplayEntry]:
        return sorted(entries, key=_display_order)[:max(self.max_display_count, 0)]

    def _assemble(self, live: List[DisplayEntry], store: ContactStore, now: datetime) -> List[DisplayEntry]:
        by_code: Dict[str, DisplayEntry] = {}
        for entry in live:
            current = by_code.get(entry.code)
            if current is None or (entry.is_active and not current.is_active):
                by_code[entry.code] = entry

        for code, record in store.items():
            if code in by_code or record.is_active:
                continue
            if self.retention.is_expired(record, now):
                continue
            by_code[code] = self._placeholder_entry(code, record)

        return self._finalize(by_code.values())

    def build_fallback(self, store: ContactStore, now: Optional[datetime] = None) -> List[DisplayEntry]:
        """
        Display list derived only from stored Past records.

        Used when the upstream feed is unavailable and nothing is cached.
        Does not modify the store.
        """
        now = ensure_utc(now or utcnow())
        store.ensure_loaded(now)
        entries = [
            self._placeholder_entry(code, record)
            for code, record in store.items()
            if not record.is_active and not self.retention.is_expired(record, now)
        ]
        return self._finalize(entries)
