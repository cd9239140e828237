from dataclasses import replace

import pytest

from feederhub.config import DownstreamConfig
from feederhub.errors import BatchShapeError, StaleBatchError, ValidationFailedError
from feederhub.ingestion import (
    HistoryAppender,
    InMemoryHistoryStore,
    InMemoryStateStore,
    IngestionPipeline,
    StateMerger,
)
from feederhub.registry import build_registry
from feederhub.services.downstream import DownstreamNotifier
from feederhub.tasks import BestEffortRunner

from conftest import NOW, observation


def batch(*states, timestamp=NOW):
    payload = {'states': list(states)}
    if timestamp is not None:
        payload['timestamp'] = timestamp
    return payload


# -------------------------------------------------------------------------
# Accepted batches
# -------------------------------------------------------------------------

def test_full_batch_is_merged_and_recorded(registry, feeder):
    feeder_id = feeder['feeder_id']
    result = registry.pipeline.ingest(
        feeder_id,
        batch(observation('abc123'), observation('def456'), observation('aaa111', callsign=None)),
    )

    assert result.success
    assert result.status_code == 200
    assert result.processed == 3
    assert result.merged == 3
    assert result.errors == []
    assert result.quality_score == 95

    assert registry.state_store.count() == 3
    assert registry.history_store.count() == 3
    stored = registry.state_store.get('def456')
    assert stored['feeder_id'] == feeder_id
    assert stored['source_priority'] == 30

    body = result.to_dict()
    assert body['success'] is True
    assert body['feeder_id'] == feeder_id
    assert body['errors'] == []
    assert set(body) == {'success', 'processed', 'merged', 'errors', 'feeder_id', 'processing_time_ms'}


def test_side_effects_update_stats_and_last_seen(registry, feeder):
    feeder_id = feeder['feeder_id']
    registry.pipeline.ingest(feeder_id, batch(observation('abc123'), observation('abc123'), observation('def456')))

    day = registry.stats.get_day(feeder_id)
    assert day.messages_received == 3
    assert day.unique_aircraft == 2
    assert day.data_quality_score == pytest.approx(100.0)
    assert day.batch_count == 1

    assert registry.feeders.get_feeder(feeder_id).last_seen_at is not None
    assert registry.runner.errors == []


def test_invalid_records_fail_individually(registry, feeder):
    result = registry.pipeline.ingest(
        feeder['feeder_id'],
        batch(observation('abc123'), observation('nothex'), observation('def456', squawk='9999')),
    )

    assert result.status_code == 200
    assert result.processed == 1
    assert result.merged == 1
    assert [(e.index, e.field) for e in result.errors] == [(1, 'icao24'), (2, 'squawk')]
    assert result.errors[1].icao24 == 'def456'
    assert all(e.retryable is False for e in result.errors)

    assert registry.history_store.count() == 1
    assert registry.stats.get_day(feeder['feeder_id']).error_count == 2


def test_resubmitting_a_batch_keeps_one_current_state(registry, feeder):
    payload = batch(observation('abc123'), observation('def456'))
    first = registry.pipeline.ingest(feeder['feeder_id'], payload)
    second = registry.pipeline.ingest(feeder['feeder_id'], payload)

    assert first.merged == second.merged == 2
    assert registry.state_store.count() == 2
    assert registry.history_store.count() == 4


def test_lower_priority_source_is_recorded_but_not_merged(registry, feeder):
    registry.pipeline.ingest(feeder['feeder_id'], batch(observation('abc123', latitude=10.0)))

    result = registry.pipeline.ingest(
        feeder['feeder_id'],
        batch(observation('abc123', latitude=20.0)),
        data_source='batch_import',
    )

    assert result.success
    assert result.processed == 1
    assert result.merged == 0
    assert result.superseded == 1
    assert registry.state_store.get('abc123')['latitude'] == 10.0
    assert registry.history_store.count('abc123') == 2


def test_sub_batches_cover_the_whole_batch(registry, feeder):
    states = [observation(f'{i:06x}') for i in range(7)]
    result = registry.pipeline.ingest(feeder['feeder_id'], batch(*states))

    assert result.processed == 7
    assert result.merged == 7
    assert registry.pipeline.stats['records_processed'] == 7


def test_stats_after_accepted_and_rejected_batches(registry, feeder):
    registry.pipeline.ingest(feeder['feeder_id'], batch(observation('abc123'), observation('nothex')))
    with pytest.raises(StaleBatchError):
        registry.pipeline.ingest(feeder['feeder_id'], batch(observation(), timestamp=NOW - 301))

    stats = registry.pipeline.stats
    assert set(stats) == {
        'batches_processed', 'batches_rejected', 'records_processed', 'record_errors',
        'merge', 'history', 'side_effects',
    }
    assert stats['batches_processed'] == 1
    assert stats['batches_rejected'] == 1
    assert stats['records_processed'] == 1
    assert stats['record_errors'] == 1
    assert stats['merge'] == {'applied': 1, 'superseded': 0, 'failed': 0}
    assert stats['side_effects']['inline'] is True


# -------------------------------------------------------------------------
# Rejected batches
# -------------------------------------------------------------------------

def test_batch_at_maximum_age_is_accepted(registry, feeder):
    result = registry.pipeline.ingest(feeder['feeder_id'], batch(observation(), timestamp=NOW - 300))
    assert result.success


def test_batch_without_timestamp_is_accepted(registry, feeder):
    result = registry.pipeline.ingest(feeder['feeder_id'], batch(observation(), timestamp=None))
    assert result.success


def test_stale_batch_is_rejected(registry, feeder):
    with pytest.raises(StaleBatchError) as excinfo:
        registry.pipeline.ingest(feeder['feeder_id'], batch(observation(), timestamp=NOW - 301))

    assert excinfo.value.status_code == 400
    assert excinfo.value.details['age_seconds'] == 301
    assert registry.history_store.count() == 0


def test_stale_batch_with_fresh_records_is_still_rejected(registry, feeder, clock):
    clock.advance(600)
    with pytest.raises(StaleBatchError):
        registry.pipeline.ingest(
            feeder['feeder_id'],
            batch(observation(last_contact=NOW + 599), timestamp=NOW),
        )


@pytest.mark.parametrize('timestamp', [-5, 'now', True])
def test_bad_timestamp_is_a_shape_error(registry, feeder, timestamp):
    with pytest.raises(BatchShapeError):
        registry.pipeline.ingest(feeder['feeder_id'], batch(observation(), timestamp=timestamp))


@pytest.mark.parametrize('payload', [
    None,
    [observation()],
    {},
    {'states': []},
    {'states': {'icao24': 'abc123'}},
])
def test_malformed_payload(registry, feeder, payload):
    with pytest.raises(BatchShapeError) as excinfo:
        registry.pipeline.ingest(feeder['feeder_id'], payload)
    assert excinfo.value.status_code == 400
    assert registry.pipeline.stats['batches_rejected'] == 1


def test_oversized_batch_is_rejected(app_config, database, clock, feeder):
    config = replace(app_config, ingestion=replace(app_config.ingestion, max_batch_size=2))
    small = build_registry(config, database=database, runner=BestEffortRunner(inline=True), clock=clock)
    try:
        with pytest.raises(BatchShapeError) as excinfo:
            small.pipeline.ingest(feeder['feeder_id'], batch(observation('aaa111'), observation('bbb222'),
                                                             observation('ccc333')))
        assert 'maximum batch size' in excinfo.value.message
    finally:
        small.pipeline.shutdown()


def test_all_invalid_batch_is_rejected_with_details(registry, feeder):
    with pytest.raises(ValidationFailedError) as excinfo:
        registry.pipeline.ingest(
            feeder['feeder_id'],
            batch(observation('nothex'), observation('abc123', latitude=123)),
        )

    details = excinfo.value.details
    assert [d['index'] for d in details] == [0, 1]
    assert details[1]['field'] == 'latitude'
    assert registry.history_store.count() == 0
    assert registry.stats.get_day(feeder['feeder_id']).error_count == 2
    assert registry.feeders.get_feeder(feeder['feeder_id']).last_seen_at is None


# -------------------------------------------------------------------------
# Deadline and failures
# -------------------------------------------------------------------------

def test_deadline_turns_into_retryable_errors(app_config, database, clock, feeder):
    config = replace(app_config, ingestion=replace(
        app_config.ingestion, deadline_base_seconds=0, deadline_per_record_seconds=0,
    ))
    hurried = build_registry(config, database=database, runner=BestEffortRunner(inline=True), clock=clock)
    try:
        result = hurried.pipeline.ingest(feeder['feeder_id'], batch(observation('abc123'), observation('def456')))
    finally:
        hurried.pipeline.shutdown()

    assert not result.success
    assert result.status_code == 503
    assert [e.index for e in result.errors] == [0, 1]
    assert all(e.retryable for e in result.errors)
    assert result.errors[0].error == 'Processing deadline exceeded'
    assert hurried.history_store.count() == 0


class FailingStats:
    def record_batch(self, *args, **kwargs):
        raise RuntimeError('stats unavailable')


class RecordingSession:
    def __init__(self):
        self.posts = []

    def post(self, url, **kwargs):
        self.posts.append(kwargs['json'])
        return type('Response', (), {'ok': True, 'status_code': 200})()


@pytest.fixture
def memory_pipeline(app_config, clock):
    """Pipeline over in-memory stores with a recording downstream."""
    session = RecordingSession()
    downstream = DownstreamNotifier(DownstreamConfig(url='http://tracker.local', token=None), session=session)
    runner = BestEffortRunner(inline=True)
    pipeline = IngestionPipeline(
        app_config.ingestion,
        app_config.priorities,
        StateMerger(InMemoryStateStore()),
        HistoryAppender(InMemoryHistoryStore()),
        stats=FailingStats(),
        downstream=downstream,
        runner=runner,
        clock=clock,
    )
    yield pipeline, session, runner
    pipeline.shutdown()


def test_side_effect_failure_does_not_change_the_response(memory_pipeline):
    pipeline, _, runner = memory_pipeline
    result = pipeline.ingest('feeder_a', batch(observation()))

    assert result.success
    assert result.status_code == 200
    assert [f.name for f in runner.errors] == ['record_stats']


def test_only_applied_states_are_forwarded(memory_pipeline):
    pipeline, session, _ = memory_pipeline
    pipeline.ingest('feeder_a', batch(observation('abc123')), data_source='manual')
    pipeline.ingest('feeder_a', batch(observation('abc123'), observation('def456')))

    assert len(session.posts) == 2
    assert session.posts[0]['feeder_id'] == 'feeder_a'
    forwarded = [state[0] for state in session.posts[1]['states']]
    assert forwarded == ['def456']


def test_nothing_forwarded_when_nothing_applied(memory_pipeline):
    pipeline, session, _ = memory_pipeline
    pipeline.ingest('feeder_a', batch(observation('abc123')), data_source='manual')
    result = pipeline.ingest('feeder_a', batch(observation('abc123')), data_source='opensky')

    assert result.merged == 0
    assert len(session.posts) == 1
