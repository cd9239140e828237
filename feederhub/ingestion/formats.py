"""
Feeder payload adapters.

Ground receivers report in their own formats. These adapters turn them
into observation mappings the validator understands (SI units, OpenSky
field names). They never validate; that happens downstream.

dump1090 / readsb aircraft.json entry (imperial units):
    hex         - ICAO24 address
    flight      - callsign, space padded
    lat, lon    - WGS84 position
    alt_baro    - barometric altitude in feet, or "ground"
    altitude    - older dump1090 barometric altitude in feet
    alt_geom    - geometric altitude in feet
    gs          - ground speed in knots
    track       - true track in degrees
    vert_rate   - vertical rate in ft/min (older: baro_rate)
    squawk      - transponder code
    category    - DO-260 emitter category ("A3"), mapped onto 0-19
    seen        - seconds since last message
    seen_pos    - seconds since last position

OpenSky state vector (array indices):
0: icao24          9: velocity
1: callsign        10: true_track
2: origin_country  11: vertical_rate
3: time_position   12: sensors
4: last_contact    13: geo_altitude
5: longitude       14: squawk
6: latitude        15: spi
7: baro_altitude   16: position_source
8: on_ground       17: category (extended responses only)
"""

import time
from typing import Any, Dict, List, Optional

FEET_TO_METERS = 0.3048
KNOTS_TO_MPS = 0.514444
FPM_TO_MPS = 0.00508

OPENSKY_FIELDS = (
    'icao24', 'callsign', 'origin_country', 'time_position', 'last_contact',
    'longitude', 'latitude', 'baro_altitude', 'on_ground', 'velocity',
    'true_track', 'vertical_rate', 'sensors', 'geo_altitude', 'squawk',
    'spi', 'position_source', 'category',
)

# Emitter set letter -> (offset into the OpenSky range, highest subcategory)
CATEGORY_SET_OFFSETS = {
    'A': (1, 7),    # A1 light (2) .. A7 rotorcraft (8)
    'B': (8, 7),    # B1 glider (9) .. B7 space vehicle (15)
    'C': (15, 4),   # C1 emergency vehicle (16) .. C4 cluster obstacle (19)
}


def feet_to_meters(feet: float) -> float:
    return feet * FEET_TO_METERS


def knots_to_mps(knots: float) -> float:
    return knots * KNOTS_TO_MPS


def fpm_to_mps(fpm: float) -> float:
    return fpm * FPM_TO_MPS


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _parse_category(value: Any) -> Optional[int]:
    """
    OpenSky category (0-19) from a DO-260 emitter category ("A3" -> 4).

    Set A covers fixed wing and rotorcraft, set B gliders, balloons and
    other non-powered or unmanned craft, set C surface vehicles and
    obstacles. A zero subcategory means no category information (1).
    Reserved codes map to None.
    """
    if not isinstance(value, str) or len(value.strip()) != 2:
        return None
    letter, digit = value.strip().upper()
    if letter not in CATEGORY_SET_OFFSETS or not digit.isdigit():
        return None

    subcategory = int(digit)
    if subcategory == 0:
        return 1
    offset, last = CATEGORY_SET_OFFSETS[letter]
    if subcategory > last:
        return None
    return offset + subcategory


def from_dump1090(aircraft: Dict[str, Any], now: Optional[float] = None) -> Dict[str, Any]:
    """
    Convert one dump1090/readsb aircraft entry to an observation.

    Relative ages (seen, seen_pos) become absolute Unix timestamps
    against now.
    """
    now = time.time() if now is None else now

    alt_baro = aircraft.get('alt_baro')
    on_ground = alt_baro == 'ground'
    baro_feet = _number(alt_baro)
    if baro_feet is None:
        baro_feet = _number(aircraft.get('altitude'))

    geo_feet = _number(aircraft.get('alt_geom'))
    speed_kts = _number(aircraft.get('gs'))
    rate_fpm = _number(aircraft.get('vert_rate'))
    if rate_fpm is None:
        rate_fpm = _number(aircraft.get('baro_rate'))

    flight = aircraft.get('flight')
    callsign = flight.strip() or None if isinstance(flight, str) else None

    seen = _number(aircraft.get('seen'))
    seen_pos = _number(aircraft.get('seen_pos'))

    return {
        'icao24': aircraft.get('hex'),
        'callsign': callsign,
        'latitude': _number(aircraft.get('lat')),
        'longitude': _number(aircraft.get('lon')),
        'baro_altitude': feet_to_meters(baro_feet) if baro_feet is not None else None,
        'geo_altitude': feet_to_meters(geo_feet) if geo_feet is not None else None,
        'velocity': knots_to_mps(speed_kts) if speed_kts is not None else None,
        'true_track': _number(aircraft.get('track')),
        'vertical_rate': fpm_to_mps(rate_fpm) if rate_fpm is not None else None,
        'squawk': aircraft.get('squawk') or None,
        'on_ground': on_ground,
        'category': _parse_category(aircraft.get('category')),
        'time_position': int(now - seen_pos) if seen_pos is not None else None,
        'last_contact': int(now - seen) if seen is not None else int(now),
        'spi': False,
        'position_source': 0,
    }


def from_dump1090_snapshot(snapshot: Dict[str, Any], now: Optional[float] = None) -> List[Dict[str, Any]]:
    """Convert a whole aircraft.json document, skipping entries without an address."""
    if now is None:
        now = _number(snapshot.get('now'))
    return [
        from_dump1090(aircraft, now)
        for aircraft in snapshot.get('aircraft') or []
        if isinstance(aircraft, dict) and aircraft.get('hex')
    ]


def as_batch(payload: Any) -> Any:
    """
    Normalize a submitted document into a {"timestamp", "states"} batch.

    An aircraft.json document (an "aircraft" list, or "format": "dump1090")
    is converted with its "now" as the batch timestamp. "format": "opensky"
    converts array states; arrays that cannot be converted are passed
    through so the validator reports them by index. Anything else is
    returned unchanged.
    """
    if not isinstance(payload, dict):
        return payload

    source_format = payload.get('format')
    if source_format == 'dump1090' or (source_format is None and isinstance(payload.get('aircraft'), list)):
        batch = {'states': from_dump1090_snapshot(payload)}
        if payload.get('now') is not None:
            batch['timestamp'] = payload['now']
        return batch

    if source_format == 'opensky' and isinstance(payload.get('states'), list):
        states = []
        for entry in payload['states']:
            converted = from_opensky_array(entry) if isinstance(entry, list) else None
            states.append(converted if converted is not None else entry)
        batch = {'states': states}
        timestamp = payload.get('time', payload.get('timestamp'))
        if timestamp is not None:
            batch['timestamp'] = timestamp
        return batch

    return payload


def from_opensky_array(arr: List[Any]) -> Optional[Dict[str, Any]]:
    """
    Convert an OpenSky state vector array into an observation.

    Returns None if the array is malformed or has no address.
    """
    if not arr or len(arr) < 17:
        return None

    icao24 = arr[0]
    if not icao24 or not isinstance(icao24, str):
        return None

    observation = dict(zip(OPENSKY_FIELDS, arr))

    callsign = observation.get('callsign')
    if isinstance(callsign, str):
        observation['callsign'] = callsign.strip() or None

    observation['on_ground'] = bool(observation.get('on_ground'))
    observation['spi'] = bool(observation.get('spi'))
    return observation
