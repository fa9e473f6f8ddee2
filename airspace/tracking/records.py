"""
Contact tracking data model.

ContactRecord is the persisted per-callsign tracking state; DisplayEntry is
the derived, never-persisted row served to the display client;
RetentionPolicy decides which Past records are evicted.

Stored JSON layout (one object per callsign, camelCase keys kept compatible
with the first_contacts.json files written by earlier deployments):

    {"DLH4AB": {"firstTime": "2024-05-03T19:40:00+00:00",
                "status": "active",
                "direction": "NO",
                "lastSeenIso": "...",
                "lastActiveIso": "..."}}

Older files stored either a bare "HH:MM" string per callsign (optionally with
a sibling "<callsign>_status" key) or German status labels. Those are
migrated on load.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import AbstractSet, Any, Dict, List, Mapping, Optional

from airspace.exceptions import MalformedRecordError

logger = logging.getLogger(__name__)

NO_DIRECTION = '-'

_TIME_OF_DAY = re.compile(r'^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*$')


class ContactStatus(str, Enum):
    """Lifecycle status of a tracked aircraft."""
    ACTIVE = 'active'
    PAST = 'past'

    @classmethod
    def parse(cls, value: Any) -> 'ContactStatus':
        """
        Parse a stored status, accepting legacy labels.

        Raises MalformedRecordError for anything unrecognised.
        """
        if isinstance(value, ContactStatus):
            return value
        key = str(value or '').strip().lower()
        if key in _STATUS_ALIASES:
            return _STATUS_ALIASES[key]
        raise MalformedRecordError(f'Unknown contact status: {value!r}')


_STATUS_ALIASES = {
    'active': ContactStatus.ACTIVE,
    'im luftraum': ContactStatus.ACTIVE,
    'in airspace': ContactStatus.ACTIVE,
    'past': ContactStatus.PAST,
    'vergangen': ContactStatus.PAST,
}

STATUS_LABELS = {
    'en': {ContactStatus.ACTIVE: 'In airspace', ContactStatus.PAST: 'Past'},
    'de': {ContactStatus.ACTIVE: 'Im Luftraum', ContactStatus.PAST: 'Vergangen'},
}


def status_labels(language: str) -> Mapping[ContactStatus, str]:
    return STATUS_LABELS.get(language, STATUS_LABELS['en'])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any, now: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """
    Interpret a stored timestamp.

    Accepts datetimes, ISO-8601 strings and bare 'HH:MM' time-of-day strings.
    A time of day is anchored to the latest moment at or before `now` with
    that wall-clock time in `tz`.
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise MalformedRecordError(f'Invalid timestamp: {value!r}')

    match = _TIME_OF_DAY.match(value)
    if match:
        hour, minute, second = (int(g) if g else 0 for g in match.groups())
        if hour > 23 or minute > 59 or second > 59:
            raise MalformedRecordError(f'Invalid time of day: {value!r}')
        local_now = now.astimezone(tz)
        candidate = local_now.replace(hour=hour, minute=minute, second=second, microsecond=0)
        if candidate > local_now:
            candidate -= timedelta(days=1)
        return candidate.astimezone(timezone.utc)

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        raise MalformedRecordError(f'Invalid timestamp: {value!r}') from None


def _optional_timestamp(value: Any, now: datetime, tz: tzinfo) -> Optional[datetime]:
    if value is None or value == '':
        return None
    return parse_timestamp(value, now, tz)


@dataclass
class ContactRecord:
    """
    Persisted tracking metadata for one callsign.

    first_time stays fixed for the whole tracking episode; direction is
    sticky once set; last_seen_at and last_active_at drive retention.
    """
    first_time: datetime
    status: ContactStatus
    direction: Optional[str] = None
    last_seen_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status is ContactStatus.ACTIVE

    @property
    def retention_reference(self) -> datetime:
        """Moment the retention age of a Past record is measured from: its last snapshot."""
        return self.last_seen_at or self.last_active_at or self.first_time

    def copy(self) -> 'ContactRecord':
        return ContactRecord(
            first_time=self.first_time,
            status=self.status,
            direction=self.direction,
            last_seen_at=self.last_seen_at,
            last_active_at=self.last_active_at,
        )

    def to_dict(self) -> dict:
        """JSON-serializable form used by the flat-file backend."""
        return {
            'firstTime': self.first_time.isoformat(),
            'status': self.status.value,
            'direction': self.direction,
            'lastSeenIso': self.last_seen_at.isoformat() if self.last_seen_at else None,
            'lastActiveIso': self.last_active_at.isoformat() if self.last_active_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], now: datetime, tz: tzinfo = timezone.utc) -> 'ContactRecord':
        if 'firstTime' not in data:
            raise MalformedRecordError('Record without firstTime')
        status = data.get('status')
        return cls(
            first_time=parse_timestamp(data['firstTime'], now, tz),
            status=ContactStatus.parse(status) if status else ContactStatus.ACTIVE,
            direction=data.get('direction') or None,
            last_seen_at=_optional_timestamp(data.get('lastSeenIso'), now, tz),
            last_active_at=_optional_timestamp(data.get('lastActiveIso'), now, tz),
        )


def records_from_json(
    raw: Mapping[str, Any],
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> Dict[str, ContactRecord]:
    """
    Convert a stored callsign table into ContactRecords.

    Legacy bare-string values become Active records (or take their status
    from a '<callsign>_status' sibling key). Entries that cannot be parsed
    are dropped.
    """
    records: Dict[str, ContactRecord] = {}
    migrated = 0

    for callsign, value in raw.items():
        if callsign.endswith('_status') and callsign[:-len('_status')] in raw:
            continue  # consumed together with its base key
        try:
            if isinstance(value, str):
                legacy_status = raw.get(f'{callsign}_status')
                record = ContactRecord(
                    first_time=parse_timestamp(value, now, tz),
                    status=ContactStatus.parse(legacy_status) if legacy_status else ContactStatus.ACTIVE,
                )
                migrated += 1
            elif isinstance(value, Mapping):
                record = ContactRecord.from_dict(value, now, tz)
            else:
                raise MalformedRecordError(f'Unsupported record type {type(value).__name__}')
        except MalformedRecordError as e:
            logger.debug(f'Dropping stored contact {callsign!r}: {e}')
            continue
        records[callsign] = record

    if migrated:
        logger.info(f'Migrated {migrated} legacy contact records')
    return records


@dataclass
class DisplayEntry:
    """One row of the display list."""
    time: str
    callsign: str
    code: str
    direction: str
    status: ContactStatus
    status_label: str
    altitude: float
    speed: float
    distance: float
    first_seen: datetime
    live: bool = True

    @property
    def is_active(self) -> bool:
        return self.status is ContactStatus.ACTIVE

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        return {
            'time': self.time,
            'callsign': self.callsign,
            'code': self.code,
            'direction': self.direction,
            'status': self.status_label,
            'altitude': self.altitude,
            'speed': self.speed,
            'distance': self.distance,
        }


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Which Past records survive pruning.

    max_past_age drops Past records whose last snapshot (retention_reference)
    is older than the given age; max_past_records then keeps only the newest Past records
    by first_time. Either limit may be None to disable it. Active records
    are never evicted.
    """
    max_past_records: Optional[int] = 7
    max_past_age: Optional[timedelta] = timedelta(minutes=10)

    @classmethod
    def from_minutes(cls, max_past_records: Optional[int], minutes: Optional[float]) -> 'RetentionPolicy':
        age = timedelta(minutes=minutes) if minutes else None
        return cls(max_past_records=max_past_records, max_past_age=age)

    def is_expired(self, record: ContactRecord, now: datetime) -> bool:
        if record.is_active or self.max_past_age is None:
            return False
        return now - record.retention_reference > self.max_past_age

    def select_evictions(
        self,
        records: Mapping[str, ContactRecord],
        now: datetime,
        present: AbstractSet[str] = frozenset(),
    ) -> List[str]:
        """
        Return the callsigns to evict.

        Callsigns in `present` are in the current snapshot. The count cap
        never evicts them, but they still take up slots, so absent Past
        records go first. The age cap applies to them as to any other
        record, since a present aircraft is aged from its last snapshot.
        """
        evict = []
        survivors = []
        kept = 0
        for callsign, record in records.items():
            if record.is_active:
                continue
            if self.is_expired(record, now):
                evict.append(callsign)
            elif callsign in present:
                kept += 1
            else:
                survivors.append((callsign, record))

        if self.max_past_records is not None:
            slots = max(self.max_past_records - kept, 0)
            survivors.sort(key=lambda item: (item[1].first_time, item[0]), reverse=True)
            evict.extend(callsign for callsign, _ in survivors[slots:])

        return evict
