"""
FirstContact model - persisted tracking state per callsign.

One row per tracked aircraft, upserted on every poll in which the aircraft
is eligible. Past rows are deleted by retention pruning, which queries by
status, first_time order and last activity.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from airspace.models.base import Base


class FirstContact(Base):
    """Tracking state of one callsign within its current episode."""

    __tablename__ = 'first_contacts'

    callsign: Mapped[str] = mapped_column(
        String(16),
        primary_key=True,
        comment='Raw callsign (or ICAO24 when no callsign is broadcast)'
    )

    first_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment='First observation of the current tracking episode (UTC)'
    )

    status: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
        comment='active or past'
    )

    direction: Mapped[Optional[str]] = mapped_column(
        String(4),
        nullable=True,
        comment='Sticky compass label from the first Active observation'
    )

    last_seen_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment='Last poll with the aircraft in the eligible snapshot'
    )

    last_active_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment='Last poll with the aircraft airborne'
    )

    __table_args__ = (
        Index('ix_first_contacts_status_first_time', 'status', 'first_time'),
    )

    def __repr__(self) -> str:
        return f'<FirstContact {self.callsign} {self.status} since {self.first_time:%H:%M}>'
