"""
AircraftState model - canonical current state of tracked aircraft.

This table represents the latest accepted state of each aircraft, whichever
feeder reported it. It's a "hot" table written by every ingestion batch.

Design notes:
- One row per aircraft (conditional upsert keyed on source priority)
- Telemetry columns mirror the canonical 19-field state vector
- Source columns record who last won the merge
"""

from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import JSON, String, Float, Integer, DateTime, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from feederhub.models.base import Base


class CanonicalStateColumns:
    """
    Telemetry columns shared by the current-state and history tables.

    All values are SI: metres, metres per second, degrees.
    """

    callsign: Mapped[Optional[str]] = mapped_column(
        String(8),
        nullable=True,
        comment='Flight callsign (e.g., UAL839)'
    )

    origin_country: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment='Country of aircraft registration'
    )

    time_position: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment='Unix timestamp of last position update'
    )

    last_contact: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment='Unix timestamp of last message received'
    )

    # Position (WGS84)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    baro_altitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Barometric altitude in meters'
    )

    on_ground: Mapped[bool] = mapped_column(Boolean, default=False)

    velocity: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Ground speed in m/s'
    )

    true_track: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='True track in degrees (0-360)'
    )

    vertical_rate: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Vertical rate in m/s (positive=climb)'
    )

    sensors: Mapped[Optional[List[int]]] = mapped_column(
        JSON,
        nullable=True,
        comment='Receiver sensor serials'
    )

    geo_altitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Geometric (GPS) altitude in meters'
    )

    squawk: Mapped[Optional[str]] = mapped_column(
        String(4),
        nullable=True,
        comment='Transponder squawk code'
    )

    spi: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment='Special Position Identification flag'
    )

    position_source: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment='Position source: 0=ADS-B, 1=ASTERIX, 2=MLAT, 3=FLARM'
    )

    category: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment='Emitter category 0-19'
    )

    ingestion_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment='Server time the observation was normalized'
    )

    # Source tracking
    feeder_id: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
        index=True,
        comment='Feeder that reported this observation'
    )

    data_source: Mapped[str] = mapped_column(
        String(20),
        default='feeder',
        comment='Ingestion channel: feeder, opensky, manual, ...'
    )

    source_priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment='Trust priority of the ingestion channel (higher wins)'
    )

    baro_altitude_from_geo: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment='baro_altitude was substituted from geo_altitude'
    )


class AircraftState(CanonicalStateColumns, Base):
    """
    Current canonical state of one aircraft.

    Only ever written through the priority merge: an incoming observation
    replaces the row when its priority is >= the stored priority.
    """

    __tablename__ = 'aircraft_states'

    icao24: Mapped[str] = mapped_column(
        String(6),
        primary_key=True,
        comment='ICAO24 hex transponder address'
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
        comment='Last merge that changed this row'
    )

    __table_args__ = (
        Index('ix_aircraft_states_location', 'latitude', 'longitude'),
        Index('ix_aircraft_states_ingestion', 'ingestion_timestamp'),
    )

    def __repr__(self) -> str:
        return f'<AircraftState {self.icao24} p={self.source_priority} via {self.feeder_id or "?"}>'
