from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from parallel_crawler.core.config import Settings, get_settings
from parallel_crawler.jobs.crawl_job import CrawlConfig, CrawlJob
from parallel_crawler.services.action_engines import ActionEngine, HttpActionEngine, ScriptActionEngine
from parallel_crawler.services.database import PostgresDatabase
from parallel_crawler.services.lock_backend import InMemoryLockBackend, LockBackend, PostgresLockBackend
from parallel_crawler.services.privileges import SystemPrivilegeContext
from parallel_crawler.services.query_backend import InMemoryQueryBackend, PostgresQueryBackend, QueryBackend
from parallel_crawler.services.shutdown import ShutdownSignal
from parallel_crawler.services.transactions import (
    InMemoryTransactionManager,
    PostgresTransactionManager,
    RetryPolicy,
    TransactionManager,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CrawlerRuntime:
    job: CrawlJob
    shutdown: ShutdownSignal
    lock_backend: LockBackend
    database: PostgresDatabase | None = None

    async def prepare(self) -> None:
        if isinstance(self.lock_backend, PostgresLockBackend):
            await self.lock_backend.ensure_schema()

    async def close(self) -> None:
        if self.database is not None:
            await self.database.close()


def build_action_engine(settings: Settings) -> ActionEngine:
    if settings.action_engine == "http":
        return HttpActionEngine(
            settings.action_http_base_url,
            timeout_seconds=settings.action_http_timeout_seconds,
        )
    return ScriptActionEngine(base_package=settings.action_base_package)


def build_runtime(settings: Settings, shutdown: ShutdownSignal | None = None) -> CrawlerRuntime:
    """Wire a crawl job from settings.

    Without a database URL every backend stays in memory and the query matches
    an empty item set, so scheduled runs are dry runs that complete at once.
    """
    retry_policy = RetryPolicy(
        max_attempts=settings.transaction_max_attempts,
        base_seconds=settings.transaction_retry_base_seconds,
        max_seconds=settings.transaction_retry_max_seconds,
    )
    database: PostgresDatabase | None = None
    lock_backend: LockBackend
    query_backend: QueryBackend
    transactions: TransactionManager
    if settings.database_url:
        database = PostgresDatabase(
            settings.database_url,
            min_pool_size=settings.database_pool_min_size,
            max_pool_size=settings.database_pool_max_size,
        )
        lock_backend = PostgresLockBackend(database)
        query_backend = PostgresQueryBackend()
        transactions = PostgresTransactionManager(database, retry_policy)
    else:
        logger.warning("CRAWLER_DATABASE_URL not set; crawl runs use empty in-memory backends (dry run)")
        lock_backend = InMemoryLockBackend()
        query_backend = InMemoryQueryBackend()
        transactions = InMemoryTransactionManager(retry_policy)

    shutdown = shutdown or ShutdownSignal()
    job = CrawlJob(
        CrawlConfig.from_settings(settings),
        lock_backend=lock_backend,
        query_backend=query_backend,
        transactions=transactions,
        engine=build_action_engine(settings),
        privileges=SystemPrivilegeContext(),
        shutdown=shutdown,
        progress_log_interval=settings.progress_log_interval,
    )
    return CrawlerRuntime(job=job, shutdown=shutdown, lock_backend=lock_backend, database=database)


@lru_cache
def get_runtime() -> CrawlerRuntime:
    return build_runtime(get_settings())
