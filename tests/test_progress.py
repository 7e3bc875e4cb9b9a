from __future__ import annotations

import pytest

from parallel_crawler.jobs.progress import JobPhase, ProgressTracker


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_elapsed_is_monotonic_while_running_and_frozen_after() -> None:
    clock = FakeClock()
    tracker = ProgressTracker(clock=clock)
    assert tracker.elapsed_ms() == 0

    tracker.start()
    readings = []
    for step in (0.0, 0.25, 0.25, 1.5):
        clock.now += step
        readings.append(tracker.elapsed_ms())
    assert readings == sorted(readings)
    assert readings[-1] == 2000

    tracker.finish(JobPhase.COMPLETED)
    clock.now += 60.0
    assert tracker.elapsed_ms() == 2000
    assert tracker.snapshot().elapsed_ms == 2000
    assert not tracker.is_running()


def test_processed_count_only_changes_while_running() -> None:
    tracker = ProgressTracker()
    with pytest.raises(RuntimeError):
        tracker.increment_processed()

    tracker.start()
    tracker.increment_processed()
    tracker.increment_processed()
    tracker.finish(JobPhase.ABORTED, "process shutdown in progress")

    with pytest.raises(RuntimeError):
        tracker.increment_processed()
    state = tracker.snapshot()
    assert state.processed_count == 2
    assert state.phase is JobPhase.ABORTED
    assert state.abort_reason == "process shutdown in progress"


def test_start_resets_counters_of_previous_run() -> None:
    tracker = ProgressTracker()
    tracker.start()
    tracker.increment_processed()
    tracker.increment_failed()
    tracker.record_page(0)
    tracker.finish(JobPhase.COMPLETED)

    tracker.start()
    state = tracker.snapshot()
    assert state.phase is JobPhase.RUNNING
    assert state.processed_count == 0
    assert state.failed_count == 0
    assert state.pages_fetched == 0
    assert state.end_time is None


def test_start_refuses_overlapping_runs_and_finish_rejects_non_terminal_phase() -> None:
    tracker = ProgressTracker()
    tracker.start()
    with pytest.raises(RuntimeError):
        tracker.start()
    with pytest.raises(ValueError):
        tracker.finish(JobPhase.RUNNING)
