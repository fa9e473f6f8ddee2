"""
Airspace Monitor Flask Application.

Main entry point for the web application. Initializes:
- Logging
- Contact store (JSON file or database)
- Poll orchestrator and display cache
- Optional background polling
- API routes

Usage:
    python -m airspace.app

Or with gunicorn:
    gunicorn 'airspace.app:create_app()'
"""

import logging
from typing import Optional

from flask import Flask
from flask_cors import CORS

from airspace.config import AppConfig, config
from airspace.api import aircraft_bp, system_bp
from airspace.ingestion import PollOrchestrator

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def create_app(
    app_config: Optional[AppConfig] = None,
    orchestrator: Optional[PollOrchestrator] = None,
    start_polling: bool = True,
) -> Flask:
    """
    Application factory for Flask.

    Args:
        app_config: Configuration (module-level config if None)
        orchestrator: Pre-built orchestrator, created from config if None
        start_polling: Whether to start the background polling thread
                       when POLL_INTERVAL_SECONDS is set. False for tests.

    Returns:
        Configured Flask application instance.
    """
    app_config = app_config or config
    configure_logging(app_config.debug)

    app = Flask(__name__)
    app.config['APP_CONFIG'] = app_config

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    app.register_blueprint(aircraft_bp)
    app.register_blueprint(system_bp)

    if orchestrator is None:
        orchestrator = PollOrchestrator.from_config(app_config)
    app.config['ORCHESTRATOR'] = orchestrator

    interval = app_config.polling.poll_interval_seconds
    if start_polling and interval > 0:
        orchestrator.start_background(interval)
        logger.info(f'Background polling every {interval}s')

    @app.route('/health')
    def health():
        """Simple health check endpoint."""
        return {'status': 'ok'}

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.errorhandler(404)
    def not_found(e):
        return {'error': 'Not found'}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f'Server error: {e}')
        return {'error': 'Internal server error'}, 500

    return app


def run_development_server():
    """Run the development server."""
    app = create_app()

    monitoring = config.monitoring
    logger.info(f'Airspace Monitor running on http://localhost:{config.port}')
    logger.info(
        f'Monitoring area: {monitoring.latitude}, {monitoring.longitude} '
        f'({monitoring.radius_km} km radius), storage: {config.storage.backend}'
    )
    if not config.opensky.has_credentials:
        logger.warning('OpenSky credentials not set - only stored contacts will be shown')

    app.run(
        host='0.0.0.0',
        port=config.port,
        debug=config.debug,
        use_reloader=False,  # Disable reloader to prevent duplicate polling threads
    )


if __name__ == '__main__':
    run_development_server()
