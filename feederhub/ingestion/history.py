"""
Append-only history of accepted observations.

Every accepted observation gets exactly one history row, whether or not
it won the current-state merge. Rows are inserted in bulk; when a bulk
insert fails the sub-batch is retried one row at a time so a single bad
row does not take its neighbours down with it.
"""

import logging
import threading
from typing import List, Optional, Sequence

from sqlalchemy import func, select

from feederhub.errors import is_transient
from feederhub.ingestion.merger import state_row
from feederhub.ingestion.normalizer import NormalizedObservation
from feederhub.ingestion.outcomes import AppendReport, RecordError
from feederhub.models import AircraftStateHistory, Database

logger = logging.getLogger(__name__)


class SqlHistoryStore:
    """History rows in the aircraft_states_history table."""

    def __init__(self, database: Database):
        self.database = database

    def insert_many(self, rows: List[dict]) -> None:
        with self.database.session() as session:
            session.execute(AircraftStateHistory.__table__.insert(), rows)

    def insert_one(self, row: dict) -> None:
        with self.database.session() as session:
            session.execute(AircraftStateHistory.__table__.insert(), [row])

    def count(self, icao24: Optional[str] = None) -> int:
        stmt = select(func.count(AircraftStateHistory.id))
        if icao24 is not None:
            stmt = stmt.where(AircraftStateHistory.icao24 == icao24.lower())
        with self.database.session() as session:
            return session.execute(stmt).scalar_one()


class InMemoryHistoryStore:
    """List-backed history for tests and single-process tools."""

    def __init__(self):
        self.rows: List[dict] = []
        self._lock = threading.Lock()

    def insert_many(self, rows: List[dict]) -> None:
        with self._lock:
            self.rows.extend(dict(row) for row in rows)

    def insert_one(self, row: dict) -> None:
        self.insert_many([row])

    def count(self, icao24: Optional[str] = None) -> int:
        with self._lock:
            if icao24 is None:
                return len(self.rows)
            return sum(1 for row in self.rows if row['icao24'] == icao24.lower())


class HistoryAppender:
    """Writes one history row per accepted observation."""

    def __init__(self, store):
        self.store = store
        self._appended = 0
        self._failed = 0
        self._lock = threading.Lock()

    def append_many(
        self,
        observations: Sequence[NormalizedObservation],
        priority: int,
        data_source: str = 'feeder',
        indices: Optional[Sequence[int]] = None,
    ) -> AppendReport:
        """
        Append a sub-batch.

        Returns the indices that were recorded (positions in
        observations, or the matching entries of indices when given).
        """
        report = AppendReport()
        if not observations:
            return report

        if indices is None:
            indices = list(range(len(observations)))
        rows = [state_row(obs, priority, data_source) for obs in observations]

        try:
            self.store.insert_many(rows)
            report.recorded.extend(indices)
        except Exception as e:
            logger.warning(f'Bulk history insert of {len(rows)} rows failed, retrying per record: {e}')
            for index, observation, row in zip(indices, observations, rows):
                try:
                    self.store.insert_one(row)
                    report.recorded.append(index)
                except Exception as row_error:
                    retryable = is_transient(row_error)
                    logger.error(f'History insert failed for {observation.icao24}: {row_error}')
                    report.errors.append(RecordError(
                        error=f'Failed to record history: {row_error}',
                        retryable=retryable,
                        icao24=observation.icao24,
                        index=index,
                        stage='history',
                    ))

        with self._lock:
            self._appended += report.processed
            self._failed += len(report.errors)

        return report

    @property
    def stats(self) -> dict:
        with self._lock:
            return {'appended': self._appended, 'failed': self._failed}
