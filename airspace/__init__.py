"""
Airspace Monitor Package.

Polls OpenSky for aircraft near a monitoring center and serves a small,
display-ready list of aircraft currently in the airspace or recently past.

Modules:
    tracking/    Geo filter, airline names, contact store, reconciliation engine
    ingestion/   OpenSky client, token broker and poll orchestrator
    models/      SQLAlchemy model for the database-backed contact store
    api/         REST endpoints for the display feed and operations
    cache.py     Thread-safe cache for the current display list
    config.py    Configuration from config.json and environment variables
"""

__version__ = '1.0.0'
