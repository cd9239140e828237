"""
Conflict resolution for the current-state view.

Several feeders report the same aircraft at the same time. Each
ingestion channel has a fixed trust priority; an incoming observation
replaces the stored record only when its priority is >= the stored one,
so equal-priority feeders are last-write-wins and a lower-priority
channel can never overwrite a higher one.

The compare-and-swap happens inside the store in a single statement,
so concurrent merges for one address need no lock in this process.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select

from feederhub.errors import is_transient
from feederhub.ingestion.normalizer import NormalizedObservation
from feederhub.ingestion.outcomes import MergeOutcome, MergeReport, RecordError
from feederhub.models import AircraftState, Database

logger = logging.getLogger(__name__)

# Columns replaced wholesale when an observation wins the merge
MERGE_COLUMNS = (
    'callsign', 'origin_country', 'time_position', 'last_contact',
    'longitude', 'latitude', 'baro_altitude', 'on_ground', 'velocity',
    'true_track', 'vertical_rate', 'sensors', 'geo_altitude', 'squawk',
    'spi', 'position_source', 'category', 'ingestion_timestamp',
    'feeder_id', 'data_source', 'source_priority', 'baro_altitude_from_geo',
    'updated_at',
)


def state_row(observation: NormalizedObservation, priority: int, data_source: str) -> dict:
    """Column values for one observation at a given channel priority."""
    row = observation.to_row()
    row['source_priority'] = priority
    row['data_source'] = data_source
    return row


# -------------------------------------------------------------------------
# Stores
# -------------------------------------------------------------------------

class SqlStateStore:
    """
    Current state in the aircraft_states table.

    Uses INSERT ... ON CONFLICT (icao24) DO UPDATE ... WHERE
    stored.source_priority <= excluded.source_priority. The row count
    tells whether the conditional update fired.
    """

    def __init__(self, database: Database):
        self.database = database

    def merge(self, row: dict) -> MergeOutcome:
        values = dict(row)
        values['updated_at'] = datetime.now(timezone.utc)

        stmt = self.database.insert(AircraftState).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=['icao24'],
            set_={name: stmt.excluded[name] for name in MERGE_COLUMNS},
            where=AircraftState.source_priority <= stmt.excluded.source_priority,
        )

        with self.database.session() as session:
            changed = session.execute(stmt).rowcount

        return MergeOutcome.APPLIED if changed > 0 else MergeOutcome.SUPERSEDED

    def get(self, icao24: str) -> Optional[dict]:
        with self.database.session() as session:
            state = session.get(AircraftState, icao24.lower())
            if state is None:
                return None
            return _model_to_dict(state)

    def all(self) -> List[dict]:
        with self.database.session() as session:
            rows = session.execute(select(AircraftState).order_by(AircraftState.icao24)).scalars().all()
            return [_model_to_dict(state) for state in rows]

    def count(self) -> int:
        with self.database.session() as session:
            return session.execute(select(func.count()).select_from(AircraftState)).scalar_one()


def _model_to_dict(state: AircraftState) -> dict:
    return {column.key: getattr(state, column.key) for column in AircraftState.__table__.columns}


class InMemoryStateStore:
    """
    Lock-guarded map of icao24 -> record.

    Same merge rule as the SQL store; for tests and single-process tools.
    """

    def __init__(self):
        self._states: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def merge(self, row: dict) -> MergeOutcome:
        icao24 = row['icao24']
        with self._lock:
            current = self._states.get(icao24)
            if current is not None and row['source_priority'] < current['source_priority']:
                return MergeOutcome.SUPERSEDED
            self._states[icao24] = dict(row, updated_at=datetime.now(timezone.utc))
            return MergeOutcome.APPLIED

    def get(self, icao24: str) -> Optional[dict]:
        with self._lock:
            state = self._states.get(icao24.lower())
            return dict(state) if state is not None else None

    def all(self) -> List[dict]:
        with self._lock:
            return [dict(self._states[k]) for k in sorted(self._states)]

    def count(self) -> int:
        with self._lock:
            return len(self._states)


# -------------------------------------------------------------------------
# Merger
# -------------------------------------------------------------------------

class StateMerger:
    """
    Applies the priority rule to batches of normalized observations.

    A failure for one address is reported and the rest of the batch
    carries on.
    """

    def __init__(self, store):
        self.store = store
        self._applied = 0
        self._superseded = 0
        self._failed = 0
        self._lock = threading.Lock()

    def merge(
        self,
        observation: NormalizedObservation,
        priority: int,
        data_source: str = 'feeder',
    ) -> MergeOutcome:
        return self.store.merge(state_row(observation, priority, data_source))

    def merge_many(
        self,
        observations: Sequence[NormalizedObservation],
        priority: int,
        data_source: str = 'feeder',
        indices: Optional[Sequence[int]] = None,
    ) -> MergeReport:
        report = MergeReport()

        for position, observation in enumerate(observations):
            try:
                outcome = self.merge(observation, priority, data_source)
            except Exception as e:
                retryable = is_transient(e)
                logger.error(f'Merge failed for {observation.icao24} (retryable={retryable}): {e}')
                report.errors.append(RecordError(
                    error=f'Failed to update current state: {e}',
                    retryable=retryable,
                    icao24=observation.icao24,
                    index=indices[position] if indices is not None else None,
                    stage='merge',
                ))
                continue

            if outcome is MergeOutcome.APPLIED:
                report.applied.append(observation)
            else:
                report.superseded += 1
                logger.debug(f'{observation.icao24}: kept stored record over priority {priority}')

        with self._lock:
            self._applied += report.merged
            self._superseded += report.superseded
            self._failed += len(report.errors)

        return report

    @property
    def stats(self) -> dict:
        with self._lock:
            return {
                'applied': self._applied,
                'superseded': self._superseded,
                'failed': self._failed,
            }
