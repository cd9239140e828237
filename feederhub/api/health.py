"""
Service health endpoints.

Provides endpoints for:
- GET /health - Status with database, ingestion and cache details
- GET /ready - Readiness (database reachable)
- GET /live - Liveness
"""

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

logger = logging.getLogger(__name__)

health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET'])
def health():
    """
    Get service health and status information.

    Returns:
    - Database connectivity
    - Ingestion pipeline counters
    - Credential cache statistics
    - Background task failures
    """
    start_time = time.perf_counter()
    registry = current_app.extensions['feederhub']

    db_ok = registry.database.ping()
    query_time_ms = (time.perf_counter() - start_time) * 1000

    body = {
        'status': 'healthy' if db_ok else 'unhealthy',
        'database': {
            'connected': db_ok,
            'type': registry.database.dialect_name,
        },
        'ingestion': registry.pipeline.stats,
        'admission': registry.gate.stats,
        'background': {
            **registry.runner.stats,
            'recent_failures': [f.to_dict() for f in registry.runner.errors[-5:]],
        },
        'downstream': registry.downstream.stats,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    }
    return jsonify(body), 200 if db_ok else 503


@health_bp.route('/ready', methods=['GET'])
def ready():
    registry = current_app.extensions['feederhub']
    if registry.database.ping():
        return jsonify({'status': 'ready'})
    return jsonify({'status': 'not ready'}), 503


@health_bp.route('/live', methods=['GET'])
def live():
    return jsonify({'status': 'alive'})
