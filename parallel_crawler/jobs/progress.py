from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class JobPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ABORTED = "aborted"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class JobState:
    phase: JobPhase
    start_time: datetime | None
    end_time: datetime | None
    elapsed_ms: int
    processed_count: int
    failed_count: int
    pages_fetched: int
    last_offset: int | None
    abort_reason: str | None


class ProgressTracker:
    """Counters and timestamps for one crawl run.

    Workers and the status API may touch these from different threads, so
    every read and write goes through one lock. Elapsed time uses the
    monotonic clock; the wall-clock timestamps are for reporting only.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._phase = JobPhase.IDLE
        self._start_time: datetime | None = None
        self._end_time: datetime | None = None
        self._started_at: float | None = None
        self._ended_at: float | None = None
        self._processed = 0
        self._failed = 0
        self._pages = 0
        self._last_offset: int | None = None
        self._abort_reason: str | None = None

    def start(self) -> None:
        with self._lock:
            if self._phase is JobPhase.RUNNING:
                raise RuntimeError("crawl run already in progress")
            self._phase = JobPhase.RUNNING
            self._start_time = datetime.now(timezone.utc)
            self._end_time = None
            self._started_at = self._clock()
            self._ended_at = None
            self._processed = 0
            self._failed = 0
            self._pages = 0
            self._last_offset = None
            self._abort_reason = None

    def finish(self, phase: JobPhase, reason: str | None = None) -> None:
        if phase not in (JobPhase.COMPLETED, JobPhase.ABORTED):
            raise ValueError(f"cannot finish a run in phase {phase.value}")
        with self._lock:
            if self._phase is not JobPhase.RUNNING:
                return
            self._phase = phase
            self._abort_reason = reason
            self._end_time = datetime.now(timezone.utc)
            self._ended_at = self._clock()

    def record_page(self, offset: int) -> None:
        with self._lock:
            self._pages += 1
            self._last_offset = offset

    def increment_processed(self) -> int:
        with self._lock:
            if self._phase is not JobPhase.RUNNING:
                raise RuntimeError("processed count can only change while running")
            self._processed += 1
            return self._processed

    def increment_failed(self) -> int:
        with self._lock:
            self._failed += 1
            return self._failed

    @property
    def phase(self) -> JobPhase:
        with self._lock:
            return self._phase

    def is_running(self) -> bool:
        return self.phase is JobPhase.RUNNING

    def processed_count(self) -> int:
        with self._lock:
            return self._processed

    def failed_count(self) -> int:
        with self._lock:
            return self._failed

    def elapsed_ms(self) -> int:
        with self._lock:
            return self._elapsed_ms_locked()

    def snapshot(self) -> JobState:
        with self._lock:
            return JobState(
                phase=self._phase,
                start_time=self._start_time,
                end_time=self._end_time,
                elapsed_ms=self._elapsed_ms_locked(),
                processed_count=self._processed,
                failed_count=self._failed,
                pages_fetched=self._pages,
                last_offset=self._last_offset,
                abort_reason=self._abort_reason,
            )

    def _elapsed_ms_locked(self) -> int:
        if self._started_at is None:
            return 0
        end = self._ended_at if self._ended_at is not None else self._clock()
        return max(0, int((end - self._started_at) * 1000))
