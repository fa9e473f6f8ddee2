"""
Data ingestion module for Airspace Monitor.

Handles OpenSky authentication, polling state vectors and driving each
poll cycle through the reconciliation engine.
"""

from airspace.ingestion.opensky_client import OpenSkyClient, StateVector
from airspace.ingestion.pipeline import CycleMetrics, PollOrchestrator
from airspace.ingestion.token_broker import TokenBroker

__all__ = ['OpenSkyClient', 'StateVector', 'TokenBroker', 'PollOrchestrator', 'CycleMetrics']
