from __future__ import annotations

import logging
from dataclasses import dataclass

from opentelemetry import trace

from parallel_crawler.core.config import Settings
from parallel_crawler.core.errors import LockUnavailable, PageFetchFailure, ShutdownRequested
from parallel_crawler.jobs.executor import BoundedBatchExecutor
from parallel_crawler.jobs.lease import LeaseCoordinator
from parallel_crawler.jobs.pager import ResultPager
from parallel_crawler.jobs.progress import JobPhase, JobState, ProgressTracker
from parallel_crawler.jobs.resolver import ActionResolver
from parallel_crawler.services.action_engines import ActionEngine
from parallel_crawler.services.lock_backend import LockBackend
from parallel_crawler.services.privileges import PrivilegeContext
from parallel_crawler.services.query_backend import QueryBackend
from parallel_crawler.services.shutdown import ShutdownSignal
from parallel_crawler.services.transactions import TransactionManager

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True, slots=True)
class CrawlConfig:
    query: str
    action_name: str
    page_size: int = 5000
    concurrency: int = 4
    lease_name: str = "parallel-crawler:crawl"
    lease_ttl_ms: int = 10000
    lease_refresh_interval_ms: int = 5000

    def __post_init__(self) -> None:
        if not self.query or not self.query.strip():
            raise ValueError("query is required")
        if not self.action_name or not self.action_name.strip():
            raise ValueError("action_name is required")
        if self.page_size <= 0:
            raise ValueError("page_size must be > 0")
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.lease_refresh_interval_ms >= self.lease_ttl_ms:
            raise ValueError("lease_refresh_interval_ms must be smaller than lease_ttl_ms")

    @classmethod
    def from_settings(cls, settings: Settings) -> "CrawlConfig":
        return cls(
            query=settings.query or "",
            action_name=settings.action_name or "",
            page_size=settings.page_size,
            concurrency=settings.concurrency,
            lease_name=settings.lease_name,
            lease_ttl_ms=settings.lease_ttl_ms,
            lease_refresh_interval_ms=settings.lease_refresh_interval_ms,
        )


class CrawlJob:
    """Apply one action to every item matched by a query, one instance cluster-wide.

    ``run`` holds the lease for its whole duration and walks the result set
    page by page. Shutdown and lease loss are only observed between pages, so
    a started page always finishes. The lease is released on every exit path.
    """

    def __init__(
        self,
        config: CrawlConfig,
        *,
        lock_backend: LockBackend,
        query_backend: QueryBackend,
        transactions: TransactionManager,
        engine: ActionEngine,
        privileges: PrivilegeContext,
        shutdown: ShutdownSignal,
        progress: ProgressTracker | None = None,
        progress_log_interval: int = 500,
    ) -> None:
        self.config = config
        self.transactions = transactions
        self.privileges = privileges
        self.shutdown = shutdown
        self.progress = progress or ProgressTracker()
        self.lease_coordinator = LeaseCoordinator(lock_backend)
        self.pager = ResultPager(query_backend, transactions)
        self.resolver = ActionResolver(engine, config.action_name)
        self.executor = BoundedBatchExecutor(
            transactions,
            engine,
            privileges,
            self.progress,
            progress_log_interval=progress_log_interval,
        )
        self._lease_lost = False

    def is_running(self) -> bool:
        return self.progress.is_running()

    def elapsed_ms(self) -> int:
        return self.progress.elapsed_ms()

    def processed_count(self) -> int:
        return self.progress.processed_count()

    def state(self) -> JobState:
        return self.progress.snapshot()

    async def run(self) -> JobState:
        if await self.transactions.is_read_only():
            logger.debug("crawl bypassed; the repository is read-only")
            return self.progress.snapshot()

        try:
            lease = await self.lease_coordinator.acquire(self.config.lease_name, self.config.lease_ttl_ms)
        except LockUnavailable:
            logger.debug("unable to obtain crawl lease name=%s - probably already running", self.config.lease_name)
            return self.progress.snapshot()

        self._lease_lost = False
        phase, reason = JobPhase.ABORTED, "run interrupted"
        started = refreshing = False
        try:
            self.resolver.reset()
            self.progress.start()
            started = True
            self.lease_coordinator.start_refresh(
                lease,
                self.config.lease_refresh_interval_ms,
                liveness_check=self.progress.is_running,
                on_lost=self._on_lease_lost,
            )
            refreshing = True
            with tracer.start_as_current_span("crawl.run") as span:
                span.set_attribute("crawl.action", self.config.action_name)
                span.set_attribute("crawl.page_size", self.config.page_size)
                phase, reason = await self.privileges.run_elevated(self._crawl)
                span.set_attribute("crawl.phase", phase.value)
                span.set_attribute("crawl.processed", self.progress.processed_count())
        except Exception as exc:
            logger.exception("crawl run failed: %s", exc)
            phase, reason = JobPhase.ABORTED, f"unexpected failure: {exc}"
        finally:
            if started:
                self.progress.finish(phase, reason)
            try:
                if refreshing:
                    await self.lease_coordinator.stop_refresh()
            finally:
                await self.lease_coordinator.release(lease)

        state = self.progress.snapshot()
        logger.info(
            "crawl finished phase=%s processed=%s failed=%s pages=%s elapsed_ms=%s",
            state.phase.value,
            state.processed_count,
            state.failed_count,
            state.pages_fetched,
            state.elapsed_ms,
        )
        return state

    async def _crawl(self) -> tuple[JobPhase, str | None]:
        offset = 0
        while True:
            try:
                self._check_continue()
            except ShutdownRequested as exc:
                logger.info("crawl aborted before offset=%s: %s", offset, exc)
                return JobPhase.ABORTED, str(exc)

            with tracer.start_as_current_span("crawl.page") as span:
                span.set_attribute("crawl.page.offset", offset)
                try:
                    page = await self.pager.fetch_page(self.config.query, offset, self.config.page_size)
                except PageFetchFailure as exc:
                    logger.error("crawl page fetch failed at offset=%s: %s", offset, exc)
                    return JobPhase.ABORTED, str(exc)
                self.progress.record_page(offset)
                span.set_attribute("crawl.page.items", len(page))

                try:
                    batch = await self.executor.process(page.items, self.resolver, self.config.concurrency)
                except Exception as exc:
                    logger.warning("crawl batch failed at offset=%s; ending run", offset, exc_info=True)
                    return JobPhase.ABORTED, f"batch failure at offset={offset}: {exc}"

            logger.debug(
                "crawl page done offset=%s items=%s succeeded=%s failed=%s",
                offset,
                len(page),
                batch.succeeded,
                batch.failed,
            )
            offset += self.config.page_size
            if page.is_last:
                return JobPhase.COMPLETED, None

    def _check_continue(self) -> None:
        if self.shutdown.is_set():
            raise ShutdownRequested("process shutdown in progress")
        if self._lease_lost:
            raise ShutdownRequested(f"lease {self.config.lease_name!r} lost")

    def _on_lease_lost(self) -> None:
        self._lease_lost = True
