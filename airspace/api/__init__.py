"""
REST API blueprints for Airspace Monitor.
"""

from airspace.api.aircraft import aircraft_bp
from airspace.api.system import system_bp

__all__ = ['aircraft_bp', 'system_bp']
