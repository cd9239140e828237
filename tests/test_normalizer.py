from datetime import datetime, timezone

import pytest

from feederhub.ingestion.formats import (
    as_batch,
    fpm_to_mps,
    feet_to_meters,
    from_dump1090,
    from_dump1090_snapshot,
    from_opensky_array,
    knots_to_mps,
)
from feederhub.ingestion.normalizer import CanonicalState, normalize_observation
from feederhub.ingestion.validator import validate_observation

from conftest import NOW, observation

CANONICAL_ORDER = (
    'icao24', 'callsign', 'origin_country', 'time_position', 'last_contact',
    'longitude', 'latitude', 'baro_altitude', 'on_ground', 'velocity',
    'true_track', 'vertical_rate', 'sensors', 'geo_altitude', 'squawk',
    'spi', 'position_source', 'category', 'ingestion_timestamp',
)


def test_canonical_field_order_is_fixed():
    assert CanonicalState._fields == CANONICAL_ORDER


def test_full_observation():
    result = normalize_observation(observation('ABC123', callsign=' ual839 '), 'feeder_x', now=NOW)
    state = result.state

    assert state.icao24 == 'abc123'
    assert state.callsign == 'UAL839'
    assert state.latitude == 37.62
    assert state.sensors == [1, 2]
    assert state.ingestion_timestamp == datetime.fromtimestamp(NOW, tz=timezone.utc)
    assert result.feeder_id == 'feeder_x'
    assert result.warnings == []
    assert result.baro_altitude_from_geo is False


def test_to_array_is_json_ready():
    values = normalize_observation(observation(), None, now=NOW).state.to_array()
    assert len(values) == 19
    assert values[0] == 'abc123'
    assert values[4] == NOW - 1
    assert values[18] == datetime.fromtimestamp(NOW, tz=timezone.utc).isoformat()


def test_missing_optionals_are_none_not_zero():
    state = normalize_observation({'icao24': 'abc123'}, 'feeder_x', now=NOW).state

    for name in ('callsign', 'origin_country', 'time_position', 'longitude', 'latitude',
                 'baro_altitude', 'velocity', 'true_track', 'vertical_rate', 'sensors',
                 'geo_altitude', 'squawk', 'position_source', 'category'):
        assert getattr(state, name) is None, name
    assert state.on_ground is False
    assert state.spi is False


def test_last_contact_defaults_to_now():
    state = normalize_observation({'icao24': 'abc123'}, None, now=NOW + 0.7).state
    assert state.last_contact == NOW


def test_blank_callsign_becomes_none():
    state = normalize_observation(observation(callsign='    '), None, now=NOW).state
    assert state.callsign is None


def test_geo_altitude_substitutes_for_missing_baro_altitude():
    result = normalize_observation(observation(baro_altitude=None, geo_altitude=3048.0), None, now=NOW)
    assert result.state.baro_altitude == 3048.0
    assert result.state.geo_altitude == 3048.0
    assert result.baro_altitude_from_geo is True
    assert result.to_row()['baro_altitude_from_geo'] is True


def test_out_of_range_codes_are_dropped_with_warning():
    result = normalize_observation(observation(category=163, position_source=7), 'feeder_x', now=NOW)
    assert result.state.category is None
    assert result.state.position_source is None
    assert len(result.warnings) == 2

    # The same record never reaches the normalizer through validation
    violations = validate_observation(observation(category=163, position_source=7)).violations
    assert sorted(v.field for v in violations) == ['category', 'position_source']


def test_to_row_carries_feeder():
    row = normalize_observation(observation(), 'feeder_x', now=NOW).to_row()
    assert row['feeder_id'] == 'feeder_x'
    assert row['icao24'] == 'abc123'
    assert set(CANONICAL_ORDER) <= set(row)


# -------------------------------------------------------------------------
# Feeder formats
# -------------------------------------------------------------------------

def test_unit_conversions():
    assert feet_to_meters(10000) == pytest.approx(3048.0, abs=0.1)
    assert knots_to_mps(100) == pytest.approx(51.4444)
    assert fpm_to_mps(1000) == pytest.approx(5.08)


def test_dump1090_aircraft():
    aircraft = {
        'hex': 'A1B2C3',
        'flight': 'DAL123  ',
        'lat': 40.64,
        'lon': -73.78,
        'alt_baro': 10000,
        'alt_geom': 10250,
        'gs': 250,
        'track': 90.5,
        'vert_rate': -640,
        'squawk': '1200',
        'category': 'A3',
        'seen': 1.4,
        'seen_pos': 2.6,
    }
    obs = from_dump1090(aircraft, now=NOW)

    assert obs['icao24'] == 'A1B2C3'
    assert obs['callsign'] == 'DAL123'
    assert obs['baro_altitude'] == pytest.approx(3048.0, abs=0.1)
    assert obs['geo_altitude'] == pytest.approx(3124.2, abs=0.1)
    assert obs['velocity'] == pytest.approx(128.611, abs=0.01)
    assert obs['vertical_rate'] == pytest.approx(-3.2512, abs=0.001)
    assert obs['on_ground'] is False
    assert obs['category'] == 4
    assert obs['last_contact'] == NOW - 2
    assert obs['time_position'] == NOW - 3

    result = normalize_observation(obs, 'feeder_x', now=NOW)
    assert result.state.icao24 == 'a1b2c3'
    assert result.state.category == 4
    assert result.warnings == []


@pytest.mark.parametrize('code, category', [
    ('A0', 1),
    ('A1', 2),
    ('a5', 6),
    ('A7', 8),
    ('B1', 9),
    ('B6', 14),
    ('B7', 15),
    ('C0', 1),
    ('C1', 16),
    ('C4', 19),
    ('C5', None),
    ('D2', None),
    ('A', None),
    ('A33', None),
    (3, None),
    (None, None),
])
def test_dump1090_emitter_category(code, category):
    assert from_dump1090({'hex': 'abc123', 'category': code}, now=NOW)['category'] == category


def test_dump1090_on_ground_and_legacy_altitude():
    obs = from_dump1090({'hex': 'abc123', 'alt_baro': 'ground', 'altitude': 0}, now=NOW)
    assert obs['on_ground'] is True
    assert obs['baro_altitude'] == 0.0
    assert obs['last_contact'] == NOW

    obs = from_dump1090({'hex': 'abc123', 'altitude': 5000}, now=NOW)
    assert obs['baro_altitude'] == pytest.approx(1524.0)
    assert obs['velocity'] is None
    assert obs['callsign'] is None


def test_dump1090_snapshot_skips_entries_without_address():
    snapshot = {'now': NOW, 'aircraft': [{'hex': 'abc123', 'seen': 0}, {'flight': 'NOHEX'}]}
    observations = from_dump1090_snapshot(snapshot)
    assert [o['icao24'] for o in observations] == ['abc123']
    assert observations[0]['last_contact'] == NOW


def test_opensky_array():
    arr = ['abc123', 'UAL839  ', 'United States', NOW - 2, NOW - 1, -122.37, 37.62, 10668.0,
           False, 230.5, 271.3, -1.3, None, 10800.0, '2345', False, 0]
    obs = from_opensky_array(arr)
    assert obs['callsign'] == 'UAL839'
    assert obs['baro_altitude'] == 10668.0
    assert obs['position_source'] == 0
    assert 'category' not in obs

    assert from_opensky_array(arr[:10]) is None
    assert from_opensky_array([None] * 17) is None


def test_as_batch_converts_dump1090_document():
    batch = as_batch({'now': NOW + 0.5, 'aircraft': [{'hex': 'abc123', 'seen': 0.5}, 'junk']})
    assert batch['timestamp'] == NOW + 0.5
    assert [s['icao24'] for s in batch['states']] == ['abc123']
    assert batch['states'][0]['last_contact'] == NOW

    batch = as_batch({'format': 'dump1090', 'aircraft': []})
    assert batch == {'states': []}


def test_as_batch_converts_opensky_arrays():
    arr = ['abc123', 'UAL839  ', 'United States', NOW - 2, NOW - 1, -122.37, 37.62, 10668.0,
           False, 230.5, 271.3, -1.3, None, 10800.0, '2345', False, 0]
    batch = as_batch({'format': 'opensky', 'time': NOW, 'states': [arr, ['short']]})

    assert batch['timestamp'] == NOW
    assert batch['states'][0]['callsign'] == 'UAL839'
    assert batch['states'][1] == ['short']


def test_as_batch_leaves_native_batches_alone():
    payload = {'timestamp': NOW, 'states': [observation()]}
    assert as_batch(payload) is payload
    assert as_batch(None) is None
    assert as_batch([observation()]) == [observation()]
