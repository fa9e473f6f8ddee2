"""
Operational API endpoints.

Provides endpoints for:
- GET|POST /api/poll  - Force one poll cycle (cron / operator trigger)
- GET /api/debug      - Internal counters and cache status
"""

import hmac
import logging
import os
import time
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request, current_app

logger = logging.getLogger(__name__)

system_bp = Blueprint('system', __name__, url_prefix='/api')


def _poll_token_valid(secret: str) -> bool:
    """Compare the supplied poll token with the shared secret."""
    supplied = request.headers.get('X-Poll-Token') or request.args.get('token') or ''
    auth = request.headers.get('Authorization', '')
    if not supplied and auth.startswith('Bearer '):
        supplied = auth[len('Bearer '):]
    return hmac.compare_digest(supplied.encode(), secret.encode())


@system_bp.route('/poll', methods=['GET', 'POST'])
def force_poll():
    """
    Run one poll cycle and return its metrics.

    When POLL_SECRET is configured the request must carry the same value
    in the X-Poll-Token header, a Bearer Authorization header or the
    `token` query parameter.
    """
    app_config = current_app.config['APP_CONFIG']
    secret = app_config.polling.poll_secret
    if secret and not _poll_token_valid(secret):
        logger.warning(f'Rejected poll request from {request.remote_addr}')
        return jsonify({'error': 'Unauthorized'}), 401

    orchestrator = current_app.config['ORCHESTRATOR']
    start_time = time.perf_counter()
    entries = orchestrator.poll_once()
    query_time_ms = (time.perf_counter() - start_time) * 1000

    return jsonify({
        'success': True,
        'metrics': orchestrator.last_metrics.to_dict(),
        'aircraft_count': len(entries),
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    })


@system_bp.route('/debug', methods=['GET'])
def get_debug_info():
    """
    Get internal status for troubleshooting.

    Returns:
    - Credential and storage configuration presence
    - Whether the OpenSky site is reachable
    - Display cache and token cache status
    - Poll orchestrator and contact store counters
    """
    app_config = current_app.config['APP_CONFIG']
    orchestrator = current_app.config['ORCHESTRATOR']
    last_request = orchestrator.last_request_time

    return jsonify({
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'environment': os.getenv('APP_ENV', 'development'),
        'hasOpenSkyCredentials': app_config.opensky.has_credentials,
        'openskyConnectivity': orchestrator.client.check_connectivity(),
        'storageBackend': orchestrator.store.backend_name,
        'cacheStatus': {
            'aircraftCached': orchestrator.cache.is_fresh,
            'tokenCached': orchestrator.token_broker.is_cached,
        },
        'lastRequestTime': (
            datetime.fromtimestamp(last_request, timezone.utc).isoformat()
            if last_request else 'never'
        ),
        'orchestrator': orchestrator.stats,
        'store': orchestrator.store.stats,
        'cache': orchestrator.cache.stats,
        'token': orchestrator.token_broker.stats,
    })
