"""
API module for FeederHub.

Provides REST endpoints for:
- Feeder registration and telemetry submission
- Per-feeder statistics, health and quality feedback
- Service health probes
"""

from feederhub.api.feeders import feeders_bp
from feederhub.api.health import health_bp

__all__ = ['feeders_bp', 'health_bp']
