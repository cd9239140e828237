import threading

from feederhub.tasks import BestEffortRunner


def boom():
    raise RuntimeError('stats table locked')


def test_inline_runner_runs_immediately():
    calls = []
    runner = BestEffortRunner(inline=True)

    runner.submit('append', calls.append, 1)

    assert calls == [1]
    assert runner.stats == {'pending': 0, 'completed': 1, 'failed': 0, 'inline': True}


def test_failures_are_captured_not_raised():
    runner = BestEffortRunner(inline=True)
    runner.submit('record_stats', boom)

    assert runner.stats['failed'] == 1
    failure = runner.errors[0]
    assert failure.name == 'record_stats'
    assert 'stats table locked' in failure.to_dict()['error']


def test_failure_channel_is_bounded():
    runner = BestEffortRunner(inline=True, max_failures=3)
    for _ in range(5):
        runner.submit('record_stats', boom)

    assert len(runner.errors) == 3
    assert runner.stats['failed'] == 5


def test_threaded_runner_drains():
    release = threading.Event()
    done = []
    runner = BestEffortRunner(max_workers=2)

    def slow():
        release.wait(5)
        done.append(True)

    runner.submit('slow', slow)
    assert runner.drain(timeout=0.01) is False

    release.set()
    assert runner.drain(timeout=5) is True
    assert done == [True]

    runner.submit('fails', boom)
    runner.drain(timeout=5)
    runner.shutdown()
    assert runner.stats['failed'] == 1
