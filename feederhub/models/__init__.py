"""
Database models for FeederHub.

Schema designed for multi-feeder telemetry ingestion with these priorities:
1. One canonical row per aircraft, replaced only by equal-or-higher priority
2. Append-only history of everything accepted
3. Cheap per-feeder daily aggregates
"""

from feederhub.models.base import Base, Database, as_utc
from feederhub.models.feeder import Feeder, FeederStatus, FeederTier
from feederhub.models.aircraft_state import AircraftState
from feederhub.models.aircraft_state_history import AircraftStateHistory, history_for_aircraft
from feederhub.models.feeder_stats import FeederDailyStats

__all__ = [
    'Base',
    'Database',
    'as_utc',
    'Feeder',
    'FeederStatus',
    'FeederTier',
    'AircraftState',
    'AircraftStateHistory',
    'history_for_aircraft',
    'FeederDailyStats',
]
