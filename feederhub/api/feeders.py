"""
Feeder API endpoints.

Provides endpoints for:
- POST /api/v1/feeders/register - Register a feeder, returns its API key once
- POST /api/v1/feeders/data - Submit a telemetry batch
- GET /api/v1/feeders/me - Feeder profile
- GET /api/v1/feeders/me/stats - Daily statistics (?days=1-90, default 7)
- GET /api/v1/feeders/me/health - Health classification
- GET /api/v1/feeders/me/quality - Data quality feedback

Errors are raised as FeederHubError subclasses and rendered by the app's
error handler.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from feederhub.admission.gate import Operation
from feederhub.errors import BatchShapeError, InvalidParameterError
from feederhub.ingestion.formats import as_batch

logger = logging.getLogger(__name__)

feeders_bp = Blueprint('feeders', __name__, url_prefix='/api/v1/feeders')


def _registry():
    return current_app.extensions['feederhub']


def _admit(operation: Operation):
    return _registry().gate.admit(request.headers.get('Authorization'), operation)


@feeders_bp.route('/register', methods=['POST'])
def register():
    """
    Register a new feeder.

    Body: {"name": str, "location"?: {"latitude", "longitude"}, "metadata"?: object}
    """
    registry = _registry()
    registry.gate.admit_registration(request.remote_addr)

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BatchShapeError('JSON body required')

    result = registry.feeders.register_feeder(
        data.get('name'),
        location=data.get('location'),
        metadata=data.get('metadata'),
    )
    return jsonify(result), 201


@feeders_bp.route('/data', methods=['POST'])
def submit_data():
    """
    Submit a telemetry batch.

    Body: {"timestamp"?: unix seconds, "states": [observation, ...]}, a
    dump1090 aircraft.json document, or {"format": "opensky", ...}.
    Not volume throttled; bounded by batch size and data age.
    """
    identity = _admit(Operation.INGEST)

    payload = as_batch(request.get_json(silent=True))
    result = _registry().pipeline.ingest(identity.feeder_id, payload)

    return jsonify(result.to_dict()), result.status_code


@feeders_bp.route('/me', methods=['GET'])
def get_me():
    identity = _admit(Operation.INFO)
    return jsonify(_registry().feeders.get_feeder_info(identity.feeder_id))


@feeders_bp.route('/me/stats', methods=['GET'])
def get_my_stats():
    identity = _admit(Operation.STATS)

    raw_days = request.args.get('days', '7')
    try:
        days = int(raw_days)
    except ValueError:
        raise InvalidParameterError('Days must be an integer between 1 and 90') from None

    return jsonify(_registry().stats.get_feeder_statistics(identity.feeder_id, days))


@feeders_bp.route('/me/health', methods=['GET'])
def get_my_health():
    identity = _admit(Operation.HEALTH)
    return jsonify(_registry().stats.get_feeder_health(identity.feeder_id))


@feeders_bp.route('/me/quality', methods=['GET'])
def get_my_quality():
    identity = _admit(Operation.QUALITY)
    quality = _registry().stats.get_data_quality_feedback(identity.feeder_id)
    return jsonify({'success': True, 'data': quality})
