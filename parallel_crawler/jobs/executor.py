from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace

from parallel_crawler.core.errors import BackendUnavailableError, ItemActionFailure
from parallel_crawler.jobs.progress import ProgressTracker
from parallel_crawler.jobs.resolver import ActionResolver, ResolvedAction
from parallel_crawler.services.action_engines import ActionEngine
from parallel_crawler.services.privileges import PrivilegeContext
from parallel_crawler.services.query_backend import ItemRef
from parallel_crawler.services.transactions import TransactionManager

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class BatchResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


class BoundedBatchExecutor:
    """Run the resolved action over one page with a fixed number of workers.

    Workers drain a shared queue, so a slow item only holds up its own worker.
    Each item gets its own transaction; the transaction manager retries
    transient conflicts, anything else is logged and counted as a failure.
    ``process`` returns only after every item of the page was attempted.
    """

    def __init__(
        self,
        transactions: TransactionManager,
        engine: ActionEngine,
        privileges: PrivilegeContext,
        progress: ProgressTracker,
        *,
        progress_log_interval: int = 500,
    ) -> None:
        self.transactions = transactions
        self.engine = engine
        self.privileges = privileges
        self.progress = progress
        self.progress_log_interval = progress_log_interval

    async def process(self, items: Sequence[ItemRef], resolver: ActionResolver, concurrency: int) -> BatchResult:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        result = BatchResult()
        if not items:
            return result

        queue: asyncio.Queue[ItemRef] = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)

        worker_count = min(concurrency, len(items))
        with tracer.start_as_current_span("crawl.batch") as span:
            span.set_attribute("crawl.batch.size", len(items))
            span.set_attribute("crawl.batch.workers", worker_count)
            workers = [
                asyncio.create_task(self._worker(queue, resolver, result), name=f"crawl-worker-{index}")
                for index in range(worker_count)
            ]
            try:
                await asyncio.gather(*workers)
            except BaseException:
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
                raise
        return result

    async def _worker(self, queue: asyncio.Queue[ItemRef], resolver: ActionResolver, result: BatchResult) -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            result.attempted += 1
            if await self._process_item(item, resolver):
                result.succeeded += 1
            else:
                result.failed += 1

    async def _process_item(self, item: ItemRef, resolver: ActionResolver) -> bool:
        async def attempt(connection: Any) -> ResolvedAction:
            action = await resolver.resolve(item)

            async def invoke() -> Any:
                return await self.engine.execute(action.handle, item, connection=connection)

            await self.privileges.run_elevated(invoke)
            return action

        with tracer.start_as_current_span("crawl.item") as span:
            span.set_attribute("crawl.item", str(item))
            try:
                await self.transactions.run_in_transaction(attempt)
            except BackendUnavailableError:
                raise
            except Exception as exc:
                failure = exc if isinstance(exc, ItemActionFailure) else ItemActionFailure(item, str(exc))
                span.record_exception(failure)
                self.progress.increment_failed()
                logger.exception("crawl action failed for item=%s: %s", item, failure)
                return False

        # Counted only once the item's transaction has committed.
        processed = self.progress.increment_processed()
        if self.progress_log_interval > 0 and processed % self.progress_log_interval == 0:
            logger.info("crawl progress processed=%s failed=%s", processed, self.progress.failed_count())
        return True
