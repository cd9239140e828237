import threading

import pytest
from sqlalchemy.exc import OperationalError

from feederhub.ingestion import (
    InMemoryStateStore,
    MergeOutcome,
    SqlStateStore,
    StateMerger,
    normalize_observation,
)

from conftest import NOW, observation

FEEDER = 30
OPENSKY = 10
MANUAL = 50


def normalized(icao24='abc123', feeder_id='feeder_a', **fields):
    return normalize_observation(observation(icao24, **fields), feeder_id, now=NOW)


@pytest.fixture(params=['memory', 'sql'])
def store(request, database):
    if request.param == 'memory':
        return InMemoryStateStore()
    return SqlStateStore(database)


def test_first_observation_is_applied(store):
    merger = StateMerger(store)
    assert merger.merge(normalized(), FEEDER) is MergeOutcome.APPLIED

    stored = store.get('abc123')
    assert stored['feeder_id'] == 'feeder_a'
    assert stored['source_priority'] == FEEDER
    assert stored['data_source'] == 'feeder'
    assert stored['callsign'] == 'UAL839'
    assert store.count() == 1


def test_equal_priority_is_last_write_wins(store):
    merger = StateMerger(store)
    merger.merge(normalized(feeder_id='feeder_a', latitude=10.0), FEEDER)
    outcome = merger.merge(normalized(feeder_id='feeder_b', latitude=20.0), FEEDER)

    assert outcome is MergeOutcome.APPLIED
    stored = store.get('abc123')
    assert stored['feeder_id'] == 'feeder_b'
    assert stored['latitude'] == 20.0


def test_lower_priority_never_overwrites(store):
    merger = StateMerger(store)
    merger.merge(normalized(feeder_id='feeder_a', latitude=10.0), FEEDER)
    outcome = merger.merge(normalized(feeder_id=None, latitude=20.0), OPENSKY, data_source='opensky')

    assert outcome is MergeOutcome.SUPERSEDED
    stored = store.get('abc123')
    assert stored['feeder_id'] == 'feeder_a'
    assert stored['latitude'] == 10.0
    assert stored['source_priority'] == FEEDER


def test_higher_priority_replaces(store):
    merger = StateMerger(store)
    merger.merge(normalized(feeder_id='feeder_a'), FEEDER)
    outcome = merger.merge(normalized(feeder_id=None, squawk='7700'), MANUAL, data_source='manual')

    assert outcome is MergeOutcome.APPLIED
    stored = store.get('abc123')
    assert stored['squawk'] == '7700'
    assert stored['data_source'] == 'manual'


def test_stored_priority_never_decreases(store):
    merger = StateMerger(store)
    for priority in (30, 10, 50, 20, 40, 30):
        merger.merge(normalized(), priority)
    assert store.get('abc123')['source_priority'] == 50


def test_merge_many_reports_each_outcome(store):
    merger = StateMerger(store)
    merger.merge(normalized('aaa111'), MANUAL)

    report = merger.merge_many(
        [normalized('aaa111'), normalized('bbb222'), normalized('ccc333')],
        FEEDER,
    )

    assert report.merged == 2
    assert report.superseded == 1
    assert report.errors == []
    assert [obs.icao24 for obs in report.applied] == ['bbb222', 'ccc333']
    assert merger.stats == {'applied': 2, 'superseded': 1, 'failed': 0}


def test_null_fields_replace_stored_values(store):
    merger = StateMerger(store)
    merger.merge(normalized(squawk='2345'), FEEDER)
    merger.merge(normalized(squawk=None), FEEDER)
    assert store.get('abc123')['squawk'] is None


def test_sql_store_keeps_canonical_values(database):
    store = SqlStateStore(database)
    StateMerger(store).merge(normalized(baro_altitude=None, geo_altitude=500.0), FEEDER)

    stored = store.get('ABC123')
    assert stored['sensors'] == [1, 2]
    assert stored['baro_altitude'] == 500.0
    assert stored['baro_altitude_from_geo'] is True
    assert stored['on_ground'] is False
    assert [row['icao24'] for row in store.all()] == ['abc123']


def test_concurrent_merges_keep_highest_priority(database):
    store = SqlStateStore(database)
    merger = StateMerger(store)
    priorities = [10, 20, 30, 40, 50] * 4
    errors = []

    def worker(priority):
        try:
            merger.merge(normalized(feeder_id=f'feeder_{priority}'), priority)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(p,)) for p in priorities]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    stored = store.get('abc123')
    assert stored['source_priority'] == 50
    assert stored['feeder_id'] == 'feeder_50'


class FlakyStore(InMemoryStateStore):
    """Fails every merge for one address."""

    def __init__(self, failing, exc):
        super().__init__()
        self.failing = failing
        self.exc = exc

    def merge(self, row):
        if row['icao24'] == self.failing:
            raise self.exc
        return super().merge(row)


def test_failure_for_one_address_does_not_stop_the_batch():
    lock_timeout = OperationalError('INSERT', {}, Exception('database is locked'))
    merger = StateMerger(FlakyStore('bbb222', lock_timeout))

    report = merger.merge_many(
        [normalized('aaa111'), normalized('bbb222'), normalized('ccc333')],
        FEEDER,
        indices=[4, 5, 6],
    )

    assert report.merged == 2
    assert len(report.errors) == 1
    error = report.errors[0]
    assert error.icao24 == 'bbb222'
    assert error.index == 5
    assert error.retryable is True
    assert error.stage == 'merge'


def test_non_transient_failure_is_not_retryable():
    merger = StateMerger(FlakyStore('aaa111', ValueError('bad row')))
    report = merger.merge_many([normalized('aaa111')], FEEDER)
    assert report.errors[0].retryable is False
    assert report.errors[0].index is None
