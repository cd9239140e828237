"""
Normalize validated observations into the canonical state vector.

The canonical vector is the fixed 19-field layout the downstream tracking
service consumes (OpenSky order plus category and ingestion time). Field
order is a compatibility contract and must never change.

Index layout:
0: icao24            10: true_track
1: callsign          11: vertical_rate
2: origin_country    12: sensors
3: time_position     13: geo_altitude
4: last_contact      14: squawk
5: longitude         15: spi
6: latitude          16: position_source
7: baro_altitude     17: category
8: on_ground         18: ingestion_timestamp
9: velocity
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping, NamedTuple, Optional

from feederhub.ingestion.validator import is_integer, is_number

logger = logging.getLogger(__name__)


class CanonicalState(NamedTuple):
    """One aircraft observation in canonical SI form."""
    icao24: str
    callsign: Optional[str]
    origin_country: Optional[str]
    time_position: Optional[int]
    last_contact: int
    longitude: Optional[float]
    latitude: Optional[float]
    baro_altitude: Optional[float]
    on_ground: bool
    velocity: Optional[float]
    true_track: Optional[float]
    vertical_rate: Optional[float]
    sensors: Optional[List[int]]
    geo_altitude: Optional[float]
    squawk: Optional[str]
    spi: bool
    position_source: Optional[int]
    category: Optional[int]
    ingestion_timestamp: datetime

    def to_array(self) -> list:
        """JSON-ready positional form for the downstream consumer."""
        values = list(self)
        values[18] = self.ingestion_timestamp.isoformat()
        return values

    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass
class NormalizedObservation:
    """
    Canonical state plus what the normalizer had to do to get there.

    baro_altitude_from_geo is True when the barometric altitude was
    missing and the geometric altitude was substituted for it.
    """
    state: CanonicalState
    feeder_id: Optional[str]
    warnings: List[str] = field(default_factory=list)
    baro_altitude_from_geo: bool = False

    @property
    def icao24(self) -> str:
        return self.state.icao24

    def to_row(self) -> dict:
        """Column values shared by the state and history tables."""
        row = self.state._asdict()
        row['feeder_id'] = self.feeder_id
        row['baro_altitude_from_geo'] = self.baro_altitude_from_geo
        return row


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if is_number(value) else None


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if is_number(value) else None


def _clamped_code(
    observation: Mapping[str, Any],
    name: str,
    low: int,
    high: int,
    warnings: List[str],
) -> Optional[int]:
    """
    Integer code within low..high, or None with a warning.

    The ingestion pipeline validates these codes before normalizing, so
    this only drops values for callers that normalize unvalidated
    adapter output directly.
    """
    value = observation.get(name)
    if value is None:
        return None
    if is_number(value) and is_integer(value) and low <= value <= high:
        return int(value)
    warnings.append(f'{name} {value!r} outside {low}-{high}, dropped')
    return None


def normalize_observation(
    observation: Mapping[str, Any],
    feeder_id: Optional[str],
    now: Optional[float] = None,
) -> NormalizedObservation:
    """
    Build the canonical state for one validated observation.

    Missing optional fields become None, never zero. last_contact
    defaults to now. Out-of-range category and position_source are
    dropped with a warning rather than failing the record; validated
    input never carries them.
    """
    now = time.time() if now is None else now
    warnings: List[str] = []

    icao24 = str(observation['icao24']).strip().lower()

    callsign = observation.get('callsign')
    if isinstance(callsign, str):
        callsign = callsign.strip().upper() or None
    else:
        callsign = None

    last_contact = _optional_int(observation.get('last_contact'))
    if last_contact is None:
        last_contact = int(now)

    geo_altitude = _optional_float(observation.get('geo_altitude'))
    baro_altitude = _optional_float(observation.get('baro_altitude'))
    from_geo = False
    if baro_altitude is None and geo_altitude is not None:
        baro_altitude = geo_altitude
        from_geo = True
        logger.debug(f'{icao24}: using geo_altitude {geo_altitude} as baro_altitude')

    sensors = observation.get('sensors')
    if isinstance(sensors, list):
        sensors = [int(s) for s in sensors]
    else:
        sensors = None

    squawk = observation.get('squawk')
    if not isinstance(squawk, str) or not squawk:
        squawk = None

    origin_country = observation.get('origin_country')
    if not isinstance(origin_country, str) or not origin_country:
        origin_country = None

    state = CanonicalState(
        icao24=icao24,
        callsign=callsign,
        origin_country=origin_country,
        time_position=_optional_int(observation.get('time_position')),
        last_contact=last_contact,
        longitude=_optional_float(observation.get('longitude')),
        latitude=_optional_float(observation.get('latitude')),
        baro_altitude=baro_altitude,
        on_ground=observation.get('on_ground') is True,
        velocity=_optional_float(observation.get('velocity')),
        true_track=_optional_float(observation.get('true_track')),
        vertical_rate=_optional_float(observation.get('vertical_rate')),
        sensors=sensors,
        geo_altitude=geo_altitude,
        squawk=squawk,
        spi=observation.get('spi') is True,
        position_source=_clamped_code(observation, 'position_source', 0, 3, warnings),
        category=_clamped_code(observation, 'category', 0, 19, warnings),
        ingestion_timestamp=datetime.fromtimestamp(now, tz=timezone.utc),
    )

    for warning in warnings:
        logger.warning(f'{icao24} from {feeder_id}: {warning}')

    return NormalizedObservation(
        state=state,
        feeder_id=feeder_id,
        warnings=warnings,
        baro_altitude_from_geo=from_geo,
    )
