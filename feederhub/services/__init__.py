"""
Feeder-facing services.

Registry of feeders, daily statistics and quality feedback, and the
best-effort forwarder to the downstream tracking service.
"""

from feederhub.services.downstream import DownstreamNotifier
from feederhub.services.feeders import FeederService
from feederhub.services.stats import StatsService

__all__ = ['DownstreamNotifier', 'FeederService', 'StatsService']
