"""
Field-level validation of feeder observations.

Pure functions: no mutation, no I/O. Each observation is checked
independently and every violation is reported with the index of the
observation and the offending field, so a batch can partially succeed.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

ICAO24_PATTERN = re.compile(r'^[0-9a-fA-F]{6}$')
SQUAWK_PATTERN = re.compile(r'^[0-7]{4}$')
CALLSIGN_PATTERN = re.compile(r'^[A-Za-z0-9]{1,8}$')

# (min, max, max_inclusive)
NUMERIC_RANGES: Dict[str, Tuple[float, float, bool]] = {
    'latitude': (-90.0, 90.0, True),
    'longitude': (-180.0, 180.0, True),
    'baro_altitude': (-1500.0, 60000.0, True),   # meters
    'geo_altitude': (-1500.0, 60000.0, True),    # meters
    'velocity': (0.0, 1500.0, True),             # m/s, up to Mach 4+
    'true_track': (0.0, 360.0, False),           # degrees, 360 wraps to 0
    'vertical_rate': (-100.0, 100.0, True),      # m/s
}

INTEGER_RANGES: Dict[str, Tuple[int, int]] = {
    'category': (0, 19),
    'position_source': (0, 3),
}

UNITS = {
    'baro_altitude': ' meters',
    'geo_altitude': ' meters',
    'velocity': ' m/s',
    'true_track': ' degrees',
    'vertical_rate': ' m/s',
}


@dataclass(frozen=True)
class FieldViolation:
    """One failed rule for one field of one observation."""
    index: int
    field: str
    message: str

    def to_dict(self) -> dict:
        return {'index': self.index, 'field': self.field, 'message': self.message}


@dataclass
class ValidationResult:
    """Outcome for a single observation."""
    index: int
    violations: List[FieldViolation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations

    def summary(self) -> str:
        """One line combining every violation, for per-record error reporting."""
        return '; '.join(f'{v.field}: {v.message}' for v in self.violations)


@dataclass
class BatchValidation:
    """
    Outcome for a whole batch.

    shape_error is set when the batch itself is malformed; in that case
    no per-record results are produced.
    """
    results: List[ValidationResult] = field(default_factory=list)
    shape_error: Optional[FieldViolation] = None

    @property
    def valid(self) -> bool:
        return self.shape_error is None and all(r.valid for r in self.results)

    @property
    def valid_indices(self) -> List[int]:
        return [r.index for r in self.results if r.valid]

    @property
    def failures(self) -> List[ValidationResult]:
        return [r for r in self.results if not r.valid]

    @property
    def violations(self) -> List[FieldViolation]:
        if self.shape_error is not None:
            return [self.shape_error]
        return [v for r in self.results for v in r.violations]


def is_number(value: Any) -> bool:
    """True for finite ints and floats; bools are not numbers here."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _present(observation: Mapping[str, Any], name: str) -> bool:
    return observation.get(name) is not None


def _check_icao24(observation: Mapping[str, Any], index: int) -> List[FieldViolation]:
    icao24 = observation.get('icao24')
    if icao24 is None or (isinstance(icao24, str) and not icao24.strip()):
        return [FieldViolation(index, 'icao24', 'ICAO24 is required')]
    if not isinstance(icao24, str) or not ICAO24_PATTERN.match(icao24.strip()):
        return [FieldViolation(index, 'icao24', 'ICAO24 must be 6 hexadecimal characters')]
    return []


def _check_numeric(observation: Mapping[str, Any], index: int) -> List[FieldViolation]:
    violations = []
    for name, (low, high, high_inclusive) in NUMERIC_RANGES.items():
        if not _present(observation, name):
            continue
        value = observation[name]
        in_range = is_number(value) and low <= value and (value <= high if high_inclusive else value < high)
        if not in_range:
            upper = f'{high:g}' if high_inclusive else f'{high:g} (exclusive)'
            label = name.replace('_', ' ').capitalize()
            violations.append(FieldViolation(
                index, name,
                f'{label} must be between {low:g} and {upper}{UNITS.get(name, "")}',
            ))
    return violations


def _check_integer_codes(observation: Mapping[str, Any], index: int) -> List[FieldViolation]:
    violations = []
    for name, (low, high) in INTEGER_RANGES.items():
        if not _present(observation, name):
            continue
        value = observation[name]
        if not (is_number(value) and is_integer(value) and low <= value <= high):
            label = name.replace('_', ' ').capitalize()
            violations.append(FieldViolation(index, name, f'{label} must be an integer between {low} and {high}'))
    return violations


def _check_codes(observation: Mapping[str, Any], index: int) -> List[FieldViolation]:
    violations = []

    if _present(observation, 'squawk'):
        squawk = observation['squawk']
        if not isinstance(squawk, str) or not SQUAWK_PATTERN.match(squawk):
            violations.append(FieldViolation(index, 'squawk', 'Squawk must be a 4-digit octal code (0-7)'))

    if _present(observation, 'callsign'):
        callsign = observation['callsign']
        if not isinstance(callsign, str):
            violations.append(FieldViolation(index, 'callsign', 'Callsign must be a string'))
        elif callsign.strip() and not CALLSIGN_PATTERN.match(callsign.strip()):
            violations.append(FieldViolation(index, 'callsign', 'Callsign must be alphanumeric, max 8 characters'))

    if _present(observation, 'origin_country') and not isinstance(observation['origin_country'], str):
        violations.append(FieldViolation(index, 'origin_country', 'Origin country must be a string'))

    return violations


def _check_timestamps(observation: Mapping[str, Any], index: int) -> List[FieldViolation]:
    violations = []
    for name in ('time_position', 'last_contact'):
        if not _present(observation, name):
            continue
        value = observation[name]
        if not is_number(value) or value < 0:
            label = name.replace('_', ' ').capitalize()
            violations.append(FieldViolation(index, name, f'{label} must be a positive Unix timestamp'))
    return violations


def _check_flags(observation: Mapping[str, Any], index: int) -> List[FieldViolation]:
    violations = []
    for name in ('on_ground', 'spi'):
        if _present(observation, name) and not isinstance(observation[name], bool):
            violations.append(FieldViolation(index, name, f'{name} must be a boolean'))

    if _present(observation, 'sensors'):
        sensors = observation['sensors']
        if not isinstance(sensors, list) or not all(is_number(s) and is_integer(s) for s in sensors):
            violations.append(FieldViolation(index, 'sensors', 'Sensors must be a list of integers'))
    return violations


def validate_observation(observation: Any, index: int = 0) -> ValidationResult:
    """Validate a single observation against every field rule."""
    result = ValidationResult(index=index)

    if not isinstance(observation, Mapping):
        result.violations.append(FieldViolation(index, 'states', 'Observation must be an object'))
        return result

    result.violations.extend(_check_icao24(observation, index))
    result.violations.extend(_check_numeric(observation, index))
    result.violations.extend(_check_integer_codes(observation, index))
    result.violations.extend(_check_codes(observation, index))
    result.violations.extend(_check_timestamps(observation, index))
    result.violations.extend(_check_flags(observation, index))
    return result


def check_batch_shape(states: Any, max_batch_size: Optional[int] = None) -> Optional[FieldViolation]:
    """Return the single whole-batch error for a malformed batch, or None."""
    if not isinstance(states, list):
        return FieldViolation(0, 'states', 'States must be an array')
    if not states:
        return FieldViolation(0, 'states', 'States array cannot be empty')
    if max_batch_size is not None and len(states) > max_batch_size:
        return FieldViolation(
            0, 'states',
            f'States array exceeds maximum batch size ({len(states)} > {max_batch_size})',
        )
    return None


def validate_batch(states: Any, max_batch_size: Optional[int] = None) -> BatchValidation:
    """
    Validate a batch of observations.

    A malformed batch (not a list, empty, oversized) produces one shape
    error and nothing else. Otherwise each element is validated
    independently and failures are collected by index.
    """
    shape_error = check_batch_shape(states, max_batch_size)
    if shape_error is not None:
        return BatchValidation(shape_error=shape_error)

    return BatchValidation(
        results=[validate_observation(obs, i) for i, obs in enumerate(states)],
    )
