"""
Display feed API endpoints.

Provides endpoints for:
- GET /api/aircraft - Current display list plus display metadata
- GET /api/config   - Title, monitoring center and radius
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify, current_app

logger = logging.getLogger(__name__)

aircraft_bp = Blueprint('aircraft', __name__, url_prefix='/api')


def _display_metadata(app_config) -> dict:
    return {
        'title': app_config.display.title,
        'coordinates': {
            'lat': app_config.monitoring.latitude,
            'lon': app_config.monitoring.longitude,
        },
        'radius': app_config.monitoring.radius_km,
    }


@aircraft_bp.route('/aircraft', methods=['GET'])
def get_aircraft():
    """
    Get the display list.

    Served from the display cache while it is fresh; otherwise one poll
    cycle runs first (subject to the upstream rate limit).
    """
    orchestrator = current_app.config['ORCHESTRATOR']
    app_config = current_app.config['APP_CONFIG']

    entries = orchestrator.cached_or_poll()

    payload = _display_metadata(app_config)
    payload.update({
        'aircraft': [entry.to_dict() for entry in entries],
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })
    return jsonify(payload)


@aircraft_bp.route('/config', methods=['GET'])
def get_config():
    """Get display title, coordinates and radius."""
    return jsonify(_display_metadata(current_app.config['APP_CONFIG']))
