"""
ContactStore - durable map from callsign to ContactRecord.

The in-memory table is authoritative for the running process. Every change
is written through to a backing store:

- JsonFileContactStore: a flat JSON document (first_contacts.json)
- SqlContactStore: a SQLAlchemy table (SQLite, PostgreSQL, ...)

Writes issued inside `batch()` are collected and flushed once when the
outermost batch exits, so one poll cycle costs one file write or one
database transaction. Backend failures never propagate to callers: reads
fall back to an empty table, writes are logged and retried naturally by
the next upsert of the same callsign.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import AbstractSet, Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy import delete, select, func
from sqlalchemy.exc import SQLAlchemyError

from airspace.exceptions import MalformedRecordError, PersistenceError
from airspace.models import FirstContact, create_db_engine, create_session_factory, init_db, session_scope
from airspace.tracking.records import (
    ContactRecord,
    ContactStatus,
    RetentionPolicy,
    ensure_utc,
    records_from_json,
    utcnow,
)

logger = logging.getLogger(__name__)


class ContactStore(ABC):
    """
    Base class holding the in-memory table and write-through logic.

    Subclasses implement `_read_all` and `_write`, raising PersistenceError
    on failure. `_prune_backing` lets a backend apply the retention policy
    to rows it holds beyond the in-memory table.
    """

    backend_name = 'abstract'

    def __init__(self, tz: tzinfo = timezone.utc):
        self.tz = tz
        self._records: Dict[str, ContactRecord] = {}
        self._lock = threading.RLock()
        self._loaded = False

        # Pending changes while batching: callsign -> record, None = delete
        self._pending: Dict[str, Optional[ContactRecord]] = {}
        self._pending_prune: Optional[Tuple[RetentionPolicy, datetime, FrozenSet[str]]] = None
        self._batch_depth = 0

        # Statistics
        self._writes = 0
        self._write_errors = 0
        self._last_error: Optional[str] = None

    # -------------------------------------------------------------------------
    # Backend hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _read_all(self, now: datetime) -> Dict[str, ContactRecord]:
        """Read the full table from the backing store."""

    @abstractmethod
    def _write(self, changes: Mapping[str, Optional[ContactRecord]]) -> None:
        """Persist upserts (record) and deletions (None)."""

    def _prune_backing(self, policy: RetentionPolicy, now: datetime, present: FrozenSet[str]) -> int:
        """Apply the retention policy directly in the backing store."""
        return 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def load(self, now: Optional[datetime] = None) -> Dict[str, ContactRecord]:
        """
        Replace the in-memory table with the backing store contents.

        Never raises: a missing or corrupt store yields an empty table.
        Returns a copy of the loaded records.
        """
        now = ensure_utc(now or utcnow())
        try:
            records = self._read_all(now)
        except PersistenceError as e:
            logger.warning(f'Contact store ({self.backend_name}) unreadable, starting empty: {e}')
            records = {}

        with self._lock:
            self._records = records
            self._loaded = True

        logger.info(f'Loaded {len(records)} contacts from {self.backend_name} store')
        return {callsign: record.copy() for callsign, record in records.items()}

    def ensure_loaded(self, now: Optional[datetime] = None) -> None:
        if not self._loaded:
            self.load(now)

    def get(self, callsign: str) -> Optional[ContactRecord]:
        """Return the live record for a callsign (mutate, then upsert)."""
        with self._lock:
            return self._records.get(callsign)

    def items(self) -> List[Tuple[str, ContactRecord]]:
        """Snapshot of (callsign, record) pairs."""
        with self._lock:
            return list(self._records.items())

    def snapshot(self) -> Dict[str, ContactRecord]:
        """Deep copy of the in-memory table."""
        with self._lock:
            return {callsign: record.copy() for callsign, record in self._records.items()}

    def upsert(self, callsign: str, record: ContactRecord) -> None:
        """Insert or replace a record; last writer wins."""
        with self._lock:
            self._records[callsign] = record
            self._queue(callsign, record)

    def delete(self, callsign: str) -> None:
        with self._lock:
            if self._records.pop(callsign, None) is not None:
                self._queue(callsign, None)

    def prune(
        self,
        policy: RetentionPolicy,
        now: Optional[datetime] = None,
        present: AbstractSet[str] = frozenset(),
    ) -> List[str]:
        """
        Evict Past records outside the retention policy.

        The same policy is applied to the in-memory table and to the backing
        store. Callsigns in `present` (the current snapshot) are exempt from
        the count cap. Returns the evicted callsigns.
        """
        now = ensure_utc(now or utcnow())
        present = frozenset(present)
        with self._lock:
            evicted = policy.select_evictions(self._records, now, present)
            for callsign in evicted:
                del self._records[callsign]
                self._pending[callsign] = None
            self._pending_prune = (policy, now, present)
            if self._batch_depth == 0:
                self.flush()

        if evicted:
            logger.info(f'Pruned {len(evicted)} past contacts: {", ".join(sorted(evicted))}')
        return evicted

    @contextmanager
    def batch(self) -> Iterator['ContactStore']:
        """Group writes into a single flush at the end of the block."""
        with self._lock:
            self._batch_depth += 1
            try:
                yield self
            finally:
                self._batch_depth -= 1
                if self._batch_depth == 0:
                    self.flush()

    def flush(self) -> bool:
        """
        Write pending changes to the backing store.

        Returns False (after logging) when the backend failed; the
        in-memory table is kept either way.
        """
        with self._lock:
            changes, self._pending = self._pending, {}
            prune, self._pending_prune = self._pending_prune, None

            try:
                if changes:
                    self._write(changes)
                    self._writes += len(changes)
                if prune:
                    self._prune_backing(*prune)
            except PersistenceError as e:
                self._write_errors += 1
                self._last_error = str(e)
                logger.error(f'Contact store write failed ({self.backend_name}): {e}')
                return False
            return True

    def _queue(self, callsign: str, record: Optional[ContactRecord]) -> None:
        self._pending[callsign] = record
        if self._batch_depth == 0:
            self.flush()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, callsign: object) -> bool:
        return callsign in self._records

    @property
    def stats(self) -> dict:
        """Get store statistics."""
        with self._lock:
            active = sum(1 for r in self._records.values() if r.is_active)
            return {
                'backend': self.backend_name,
                'loaded': self._loaded,
                'records': len(self._records),
                'active': active,
                'past': len(self._records) - active,
                'writes': self._writes,
                'write_errors': self._write_errors,
                'last_error': self._last_error,
            }


class JsonFileContactStore(ContactStore):
    """Contacts kept in a single JSON file, rewritten atomically."""

    backend_name = 'file'

    def __init__(self, path, tz: tzinfo = timezone.utc):
        super().__init__(tz=tz)
        self.path = Path(path)

    def _read_all(self, now: datetime) -> Dict[str, ContactRecord]:
        if not self.path.exists():
            logger.info(f'{self.path} does not exist yet, starting with no contacts')
            return {}

        try:
            with self.path.open(encoding='utf-8') as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as e:
            raise PersistenceError(f'Cannot read {self.path}: {e}') from e

        if not isinstance(raw, dict):
            raise PersistenceError(f'{self.path} does not contain a callsign object')

        records = records_from_json(raw, now, self.tz)

        # Rewrite once in the current format after a migration or cleanup
        normalized = {callsign: record.to_dict() for callsign, record in records.items()}
        if normalized != raw:
            try:
                self._dump(normalized)
            except PersistenceError as e:
                logger.warning(f'Could not rewrite migrated contacts: {e}')

        return records

    def _write(self, changes: Mapping[str, Optional[ContactRecord]]) -> None:
        # The whole in-memory table is the file content
        self._dump({callsign: record.to_dict() for callsign, record in self._records.items()})

    def _dump(self, data: dict) -> None:
        directory = self.path.parent if str(self.path.parent) else Path('.')
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f'.{self.path.name}.', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                    json.dump(data, fh, indent=2, ensure_ascii=False)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistenceError(f'Cannot write {self.path}: {e}') from e


class SqlContactStore(ContactStore):
    """Contacts kept in the first_contacts table of a SQL database."""

    backend_name = 'sql'

    def __init__(self, url: str, tz: tzinfo = timezone.utc, echo: bool = False, engine=None):
        super().__init__(tz=tz)
        self.url = url
        self.engine = engine or create_db_engine(url, echo=echo)
        self._session_factory = create_session_factory(self.engine)
        self._schema_ready = False

    def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        init_db(self.engine)
        self._schema_ready = True

    @staticmethod
    def _to_record(row: FirstContact) -> ContactRecord:
        return ContactRecord(
            first_time=ensure_utc(row.first_time),
            status=ContactStatus.parse(row.status),
            direction=row.direction or None,
            last_seen_at=ensure_utc(row.last_seen_at) if row.last_seen_at else None,
            last_active_at=ensure_utc(row.last_active_at) if row.last_active_at else None,
        )

    def _read_all(self, now: datetime) -> Dict[str, ContactRecord]:
        records: Dict[str, ContactRecord] = {}
        try:
            self._ensure_schema()
            with session_scope(self._session_factory) as session:
                rows = session.scalars(select(FirstContact)).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f'Cannot read first_contacts: {e}') from e

        for row in rows:
            try:
                records[row.callsign] = self._to_record(row)
            except MalformedRecordError as e:
                logger.debug(f'Dropping stored contact {row.callsign!r}: {e}')
        return records

    def _write(self, changes: Mapping[str, Optional[ContactRecord]]) -> None:
        try:
            self._ensure_schema()
            with session_scope(self._session_factory) as session:
                for callsign, record in changes.items():
                    if record is None:
                        session.execute(
                            delete(FirstContact).where(FirstContact.callsign == callsign)
                        )
                        continue
                    session.merge(FirstContact(
                        callsign=callsign,
                        first_time=record.first_time,
                        status=record.status.value,
                        direction=record.direction,
                        last_seen_at=record.last_seen_at,
                        last_active_at=record.last_active_at,
                    ))
        except SQLAlchemyError as e:
            raise PersistenceError(f'Cannot write first_contacts: {e}') from e

    def _prune_backing(self, policy: RetentionPolicy, now: datetime, present: FrozenSet[str]) -> int:
        """
        Delete expired and surplus Past rows with range/order queries.

        Mirrors RetentionPolicy.select_evictions for rows that are not in
        the in-memory table (e.g. written by an earlier process).
        Rows for callsigns in `present` are exempt from the count cap.
        """
        deleted = 0
        is_past = FirstContact.status == ContactStatus.PAST.value
        protected = sorted(present)
        try:
            self._ensure_schema()
            with session_scope(self._session_factory) as session:
                if policy.max_past_age is not None:
                    reference = func.coalesce(
                        FirstContact.last_seen_at,
                        FirstContact.last_active_at,
                        FirstContact.first_time,
                    )
                    result = session.execute(
                        delete(FirstContact)
                        .where(is_past, reference < now - policy.max_past_age)
                        .execution_options(synchronize_session=False)
                    )
                    deleted += result.rowcount or 0

                if policy.max_past_records is not None:
                    kept = 0
                    if protected:
                        kept = session.scalar(
                            select(func.count())
                            .select_from(FirstContact)
                            .where(is_past, FirstContact.callsign.in_(protected))
                        ) or 0
                    keep = session.scalars(
                        select(FirstContact.callsign)
                        .where(is_past, FirstContact.callsign.not_in(protected))
                        .order_by(FirstContact.first_time.desc(), FirstContact.callsign.desc())
                        .limit(max(policy.max_past_records - kept, 0))
                    ).all()
                    result = session.execute(
                        delete(FirstContact)
                        .where(is_past, FirstContact.callsign.not_in(list(keep) + protected))
                        .execution_options(synchronize_session=False)
                    )
                    deleted += result.rowcount or 0
        except SQLAlchemyError as e:
            raise PersistenceError(f'Cannot prune first_contacts: {e}') from e

        if deleted:
            logger.debug(f'Removed {deleted} past rows from first_contacts')
        return deleted


def create_contact_store(storage, tz: tzinfo = timezone.utc) -> ContactStore:
    """Create the backend selected by a StorageConfig."""
    if storage.database_url:
        logger.info('Using SQL contact store')
        return SqlContactStore(storage.database_url, tz=tz)
    logger.info(f'Using file contact store at {storage.contacts_file}')
    return JsonFileContactStore(storage.contacts_file, tz=tz)
