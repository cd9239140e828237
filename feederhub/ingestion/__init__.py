"""
Data ingestion module for FeederHub.

Handles validating, normalizing and merging feeder telemetry batches,
and appending them to the relational history.
"""

from feederhub.ingestion.history import HistoryAppender, InMemoryHistoryStore, SqlHistoryStore
from feederhub.ingestion.merger import InMemoryStateStore, SqlStateStore, StateMerger
from feederhub.ingestion.normalizer import CanonicalState, NormalizedObservation, normalize_observation
from feederhub.ingestion.outcomes import MergeOutcome, RecordError
from feederhub.ingestion.pipeline import IngestionPipeline, IngestionResult

__all__ = [
    'CanonicalState',
    'HistoryAppender',
    'InMemoryHistoryStore',
    'InMemoryStateStore',
    'IngestionPipeline',
    'IngestionResult',
    'MergeOutcome',
    'NormalizedObservation',
    'RecordError',
    'SqlHistoryStore',
    'SqlStateStore',
    'StateMerger',
    'normalize_observation',
]
