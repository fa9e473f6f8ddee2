"""
Database models for Airspace Monitor.

Only used by the SQL contact store backend; the flat-file backend keeps the
same records in a JSON document.
"""

from airspace.models.base import Base, create_db_engine, create_session_factory, init_db, session_scope
from airspace.models.first_contact import FirstContact

__all__ = [
    'Base',
    'create_db_engine',
    'create_session_factory',
    'init_db',
    'session_scope',
    'FirstContact',
]
