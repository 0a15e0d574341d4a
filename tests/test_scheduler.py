import threading

from errors import ConsensusConflictError
from scheduler import PeriodicTask


def test_overlapping_tick_is_skipped():
    results = []

    def cycle():
        results.append(task.run_once())

    task = PeriodicTask("nested", 10.0, cycle)
    assert task.run_once()
    assert results == [False]
    assert task.skipped_ticks == 1


def test_cycle_errors_are_kept_and_schedule_survives():
    calls = []

    def cycle():
        calls.append(1)
        raise RuntimeError("transient")

    task = PeriodicTask("flaky", 10.0, cycle)
    assert task.run_once()
    assert task.run_once()
    assert len(calls) == 2
    assert isinstance(task.last_error, RuntimeError)


def test_fatal_error_stops_schedule():
    ran = threading.Event()

    def cycle():
        ran.set()
        raise ConsensusConflictError("fork")

    task = PeriodicTask("sync", 0.01, cycle, fatal_errors=(ConsensusConflictError,))
    task.start()
    assert ran.wait(2.0)
    task._thread.join(2.0)
    assert not task.running
    assert isinstance(task.last_error, ConsensusConflictError)
    task.stop()


def test_start_and_stop():
    ticks = threading.Semaphore(0)
    task = PeriodicTask("ticker", 0.01, ticks.release)
    task.start()
    assert ticks.acquire(timeout=2.0)
    assert ticks.acquire(timeout=2.0)
    task.stop(timeout=2.0)
    assert not task.running
