"""
Aircraft contact tracking.

Turns raw state vector snapshots into a persisted per-callsign record of
aircraft in the airspace (Active) or recently departed (Past), and derives
the display list from it.
"""

from airspace.tracking.airlines import AirlineResolver
from airspace.tracking.engine import ReconciliationEngine, ReconcileStats
from airspace.tracking.geo import GeoFilter, degrees_to_direction, haversine_distance, is_eligible
from airspace.tracking.records import ContactRecord, ContactStatus, DisplayEntry, RetentionPolicy
from airspace.tracking.store import (
    ContactStore,
    JsonFileContactStore,
    SqlContactStore,
    create_contact_store,
)

__all__ = [
    'AirlineResolver',
    'ContactRecord',
    'ContactStatus',
    'ContactStore',
    'DisplayEntry',
    'GeoFilter',
    'JsonFileContactStore',
    'ReconcileStats',
    'ReconciliationEngine',
    'RetentionPolicy',
    'SqlContactStore',
    'create_contact_store',
    'degrees_to_direction',
    'haversine_distance',
    'is_eligible',
]
