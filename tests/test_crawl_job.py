from __future__ import annotations

import asyncio
from typing import Any

from conftest import RecordingEngine, make_items

from parallel_crawler.core.errors import BackendUnavailableError
from parallel_crawler.jobs.progress import JobPhase
from parallel_crawler.services.lock_backend import InMemoryLockBackend
from parallel_crawler.services.query_backend import InMemoryQueryBackend
from parallel_crawler.services.privileges import SYSTEM_PRINCIPAL
from parallel_crawler.services.shutdown import ShutdownSignal
from parallel_crawler.services.transactions import InMemoryTransactionManager


def test_crawl_visits_every_item_once_across_short_last_page(make_job, lock_backend) -> None:
    items = make_items(12_345)
    backend = InMemoryQueryBackend(items)
    engine = RecordingEngine()
    job = make_job(query_backend=backend, engine=engine, page_size=5000, concurrency=4)

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.COMPLETED
    assert state.processed_count == 12_345
    assert state.failed_count == 0
    assert state.pages_fetched == 3
    assert [(offset, limit) for _, offset, limit in backend.calls] == [(0, 5000), (5000, 5000), (10000, 5000)]
    visited = [item for item, _ in engine.executed]
    assert len(visited) == len(set(visited))
    assert set(visited) == set(items)
    assert lock_backend.holder("parallel-crawler:crawl") is None


def test_crawl_fetches_one_extra_empty_page_when_total_is_a_multiple(make_job) -> None:
    backend = InMemoryQueryBackend(make_items(10))
    job = make_job(query_backend=backend, page_size=5)

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.COMPLETED
    assert state.processed_count == 10
    assert [offset for _, offset, _ in backend.calls] == [0, 5, 10]


def test_crawl_of_empty_result_completes_without_resolving_action(make_job) -> None:
    engine = RecordingEngine()
    job = make_job([], engine=engine, page_size=5)

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.COMPLETED
    assert state.processed_count == 0
    assert engine.handles_created == 0


def test_action_is_resolved_once_and_shared_by_every_item(make_job) -> None:
    engine = RecordingEngine(delay=0.001)
    job = make_job(make_items(40), engine=engine, page_size=15, concurrency=4)

    asyncio.run(job.run())

    assert engine.handles_created == 1
    assert job.resolver.resolve_count == 1
    handles = {id(handle) for _, handle in engine.executed}
    assert len(handles) == 1
    assert job.resolver.resolved is not None


def test_actions_run_with_system_principal(make_job) -> None:
    engine = RecordingEngine()
    job = make_job(make_items(6), engine=engine, page_size=4)

    asyncio.run(job.run())

    assert engine.principals == [SYSTEM_PRINCIPAL] * 6


def test_item_failures_do_not_abort_the_run(make_job) -> None:
    items = make_items(20)
    engine = RecordingEngine(fail_items={items[3], items[11]})
    job = make_job(items, engine=engine, page_size=8, concurrency=3)

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.COMPLETED
    assert state.processed_count == 18
    assert state.failed_count == 2


def test_second_concurrent_run_observes_lock_unavailable(make_job, lock_backend) -> None:
    first_engine = RecordingEngine(delay=0.005)
    second_engine = RecordingEngine(delay=0.005)
    first = make_job(make_items(20), engine=first_engine, page_size=10, concurrency=2)
    second = make_job(make_items(20), engine=second_engine, page_size=10, concurrency=2)

    async def run_both() -> list[Any]:
        return await asyncio.gather(first.run(), second.run())

    states = asyncio.run(run_both())

    phases = sorted(state.phase.value for state in states)
    assert phases == ["completed", "idle"]
    assert len(first_engine.executed) + len(second_engine.executed) == 20
    assert min(len(first_engine.executed), len(second_engine.executed)) == 0


def test_shutdown_after_a_page_stops_before_fetching_the_next(make_job, lock_backend) -> None:
    shutdown = ShutdownSignal()
    page_size = 10

    def request_after_second_page(engine: RecordingEngine, item: str) -> None:
        if len(engine.executed) == 2 * page_size:
            shutdown.request()

    backend = InMemoryQueryBackend(make_items(55))
    engine = RecordingEngine(on_execute=request_after_second_page)
    job = make_job(query_backend=backend, engine=engine, shutdown=shutdown, page_size=page_size, concurrency=3)

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.ABORTED
    assert state.processed_count == 2 * page_size
    assert [offset for _, offset, _ in backend.calls] == [0, page_size]
    assert "shutdown" in (state.abort_reason or "")
    assert lock_backend.holder("parallel-crawler:crawl") is None


def test_shutdown_before_run_aborts_without_processing(make_job) -> None:
    shutdown = ShutdownSignal()
    shutdown.request()
    engine = RecordingEngine()
    job = make_job(make_items(5), engine=engine, shutdown=shutdown)

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.ABORTED
    assert state.processed_count == 0
    assert engine.executed == []


def test_page_fetch_failure_aborts_run_and_releases_lease(make_job, lock_backend) -> None:
    class FailingSecondPage(InMemoryQueryBackend):
        async def query(self, predicate: str, offset: int, limit: int, *, connection: Any) -> list[str]:
            if offset > 0:
                raise RuntimeError("search index unavailable")
            return await super().query(predicate, offset, limit, connection=connection)

    job = make_job(query_backend=FailingSecondPage(make_items(30)), page_size=10)

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.ABORTED
    assert state.processed_count == 10
    assert "offset=10" in (state.abort_reason or "")
    assert lock_backend.holder("parallel-crawler:crawl") is None


def test_unexpected_batch_failure_aborts_run(make_job, lock_backend) -> None:
    class UnavailableEngine(RecordingEngine):
        async def execute(self, handle: Any, item: str, *, connection: Any = None) -> None:
            raise BackendUnavailableError("database unavailable")

    job = make_job(make_items(12), engine=UnavailableEngine(), page_size=5)

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.ABORTED
    assert state.processed_count == 0
    assert state.pages_fetched == 1
    assert lock_backend.holder("parallel-crawler:crawl") is None


def test_read_only_repository_bypasses_the_crawl(make_job, lock_backend) -> None:
    engine = RecordingEngine()
    job = make_job(
        make_items(5),
        engine=engine,
        transactions=InMemoryTransactionManager(read_only=True),
    )

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.IDLE
    assert engine.executed == []
    assert lock_backend.refresh_count == 0


def test_lease_is_refreshed_while_running(make_job, lock_backend) -> None:
    engine = RecordingEngine(delay=0.01)
    job = make_job(
        make_items(12),
        engine=engine,
        page_size=4,
        concurrency=1,
        lease_ttl_ms=500,
        lease_refresh_interval_ms=20,
    )

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.COMPLETED
    assert lock_backend.refresh_count >= 1


def test_lost_lease_aborts_at_next_page_boundary(make_job) -> None:
    class ForgetfulLockBackend(InMemoryLockBackend):
        async def refresh(self, token: str, name: str, ttl_ms: int) -> bool:
            self.refresh_count += 1
            return False

    locks = ForgetfulLockBackend()
    engine = RecordingEngine(delay=0.03)
    job = make_job(
        make_items(10),
        engine=engine,
        locks=locks,
        page_size=2,
        concurrency=1,
        lease_ttl_ms=1000,
        lease_refresh_interval_ms=10,
    )

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.ABORTED
    assert "lost" in (state.abort_reason or "")
    assert state.processed_count == 2
    assert locks.refresh_count == 1


def test_elapsed_time_is_frozen_after_completion(make_job) -> None:
    job = make_job(make_items(3), page_size=2)

    state = asyncio.run(job.run())

    assert not job.is_running()
    assert job.elapsed_ms() == state.elapsed_ms
    assert state.end_time is not None and state.start_time is not None
    assert state.end_time >= state.start_time


def test_job_can_run_again_after_completion(make_job) -> None:
    engine = RecordingEngine()
    job = make_job(make_items(4), engine=engine, page_size=3)

    first = asyncio.run(job.run())
    second = asyncio.run(job.run())

    assert first.processed_count == 4
    assert second.processed_count == 4
    assert engine.handles_created == 2


def test_failure_to_start_refresh_still_releases_the_lease(make_job, lock_backend, monkeypatch) -> None:
    job = make_job(make_items(5))

    def refuse(*args: Any, **kwargs: Any) -> None:
        raise RuntimeError("lease refresh already running")

    monkeypatch.setattr(job.lease_coordinator, "start_refresh", refuse)
    state = asyncio.run(job.run())

    assert state.phase is JobPhase.ABORTED
    assert "lease refresh already running" in (state.abort_reason or "")
    assert state.processed_count == 0
    assert lock_backend.holder(job.config.lease_name) is None


def test_run_on_busy_tracker_releases_lease_and_leaves_tracker_alone(make_job, lock_backend) -> None:
    job = make_job(make_items(5))
    job.progress.start()

    state = asyncio.run(job.run())

    assert state.phase is JobPhase.RUNNING
    assert state.processed_count == 0
    assert lock_backend.holder(job.config.lease_name) is None
