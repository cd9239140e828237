"""
FeederHub Flask Application.

Main entry point for the web service. Initializes:
- Configuration and logging
- Database schema and component registry
- API routes
- Error handlers

Usage:
    python -m feederhub.app

Or with gunicorn:
    gunicorn 'feederhub.app:create_app()'
"""

import logging
import os
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError

from feederhub.api import feeders_bp, health_bp
from feederhub.config import AppConfig, load_config
from feederhub.errors import FeederHubError, StorageUnavailableError, is_transient
from feederhub.registry import Registry, build_registry

logger = logging.getLogger(__name__)


def configure_logging(app_config: AppConfig) -> None:
    logging.basicConfig(
        level=logging.DEBUG if app_config.debug else getattr(logging, app_config.log_level, logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def create_app(app_config: Optional[AppConfig] = None, registry: Optional[Registry] = None) -> Flask:
    """
    Application factory for Flask.

    Args:
        app_config: Configuration (loaded from the environment if None).
        registry: Prebuilt components; built from app_config if None.
                  Tests pass their own.

    Returns:
        Configured Flask application instance.
    """
    app_config = app_config or (registry.config if registry else load_config())
    configure_logging(app_config)

    app = Flask(__name__)

    # Enable CORS for API endpoints
    CORS(app, resources={r'/api/*': {'origins': '*'}})

    if registry is None:
        logger.info('Initializing database...')
        registry = build_registry(app_config)
    app.extensions['feederhub'] = registry

    # Register API blueprints
    app.register_blueprint(feeders_bp)
    app.register_blueprint(health_bp)

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.errorhandler(FeederHubError)
    def feederhub_error(e):
        if e.status_code >= 500:
            logger.error(f'{type(e).__name__}: {e.message}')
        response = jsonify(e.to_dict())
        response.status_code = e.status_code
        retry_after = getattr(e, 'retry_after', None)
        if retry_after is not None:
            response.headers['Retry-After'] = str(retry_after)
        return response

    @app.errorhandler(SQLAlchemyError)
    def storage_error(e):
        logger.error(f'Storage error: {e}')
        if is_transient(e):
            return StorageUnavailableError('Storage temporarily unavailable').to_dict(), 503
        return {'success': False, 'error': 'Internal server error'}, 500

    @app.errorhandler(404)
    def not_found(e):
        return {'success': False, 'error': 'Not found'}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {'success': False, 'error': 'Method not allowed'}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f'Server error: {e}')
        return {'success': False, 'error': 'Internal server error'}, 500

    return app


def run_development_server():
    """Run the development server."""
    app_config = load_config()
    app = create_app(app_config)

    # Get port from environment or default
    port = int(os.environ.get('PORT', 5000))

    logger.info(f'Starting FeederHub on http://localhost:{port}')
    logger.info(f'Ingestion endpoint: http://localhost:{port}/api/v1/feeders/data')

    app.run(
        host='0.0.0.0',
        port=port,
        debug=app_config.debug,
        use_reloader=False,  # Reloader would build a second registry and worker pool
    )


if __name__ == '__main__':
    run_development_server()
