"""
AircraftStateHistory model - append-only record of every accepted observation.

This is the audit trail of "what every feeder reported". Rows are written
whether or not the observation won the current-state merge, and are never
updated or deleted by the ingestion path.

Schema optimized for:
- Fast batch inserts (append-only pattern)
- Efficient time-range queries per aircraft
- Per-feeder reconstruction
"""

from typing import List, Optional

from sqlalchemy import Integer, String, Index, select
from sqlalchemy.orm import Mapped, mapped_column, Session

from feederhub.models.base import Base
from feederhub.models.aircraft_state import CanonicalStateColumns


class AircraftStateHistory(CanonicalStateColumns, Base):
    """
    Historical telemetry records.

    One row per accepted observation. Not a foreign key to the state or
    feeder tables to avoid insert overhead.
    """

    __tablename__ = 'aircraft_states_history'

    # Using Integer for SQLite compatibility (autoincrement only works with INTEGER)
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment='Surrogate key'
    )

    icao24: Mapped[str] = mapped_column(
        String(6),
        nullable=False,
        comment='ICAO24 hex address'
    )

    __table_args__ = (
        # Primary analytical query: history for one aircraft in time order
        Index('ix_aircraft_history_icao_time', 'icao24', 'last_contact'),
        Index('ix_aircraft_history_ingestion', 'ingestion_timestamp'),
    )

    def __repr__(self) -> str:
        return f'<AircraftStateHistory {self.icao24} @ {self.last_contact} via {self.feeder_id or "?"}>'


# -------------------------------------------------------------------------
# Query helpers
# -------------------------------------------------------------------------

def history_for_aircraft(
    session: Session,
    icao24: str,
    feeder_id: Optional[str] = None,
) -> List[AircraftStateHistory]:
    """Return every history row for an aircraft in insertion order."""
    stmt = select(AircraftStateHistory).where(AircraftStateHistory.icao24 == icao24.lower())
    if feeder_id is not None:
        stmt = stmt.where(AircraftStateHistory.feeder_id == feeder_id)
    stmt = stmt.order_by(AircraftStateHistory.id.asc())
    return list(session.execute(stmt).scalars().all())
