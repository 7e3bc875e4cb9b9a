from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import Any

import pytest

from parallel_crawler.jobs.crawl_job import CrawlConfig, CrawlJob
from parallel_crawler.services.lock_backend import InMemoryLockBackend
from parallel_crawler.services.privileges import SystemPrivilegeContext, current_principal
from parallel_crawler.services.query_backend import InMemoryQueryBackend
from parallel_crawler.services.shutdown import ShutdownSignal
from parallel_crawler.services.transactions import InMemoryTransactionManager, RetryPolicy


class RecordingEngine:
    """Action engine double that records every call."""

    def __init__(
        self,
        *,
        delay: float = 0.0,
        fail_items: Iterable[str] = (),
        on_execute: Callable[["RecordingEngine", str], None] | None = None,
    ) -> None:
        self.delay = delay
        self.fail_items = set(fail_items)
        self.on_execute = on_execute
        self.handles_created = 0
        self.executed: list[tuple[str, Any]] = []
        self.principals: list[str | None] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def create_action(self, name: str) -> dict[str, Any]:
        self.handles_created += 1
        await asyncio.sleep(0)
        return {"name": name, "serial": self.handles_created}

    async def execute(self, handle: Any, item: str, *, connection: Any = None) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.principals.append(current_principal())
            if item in self.fail_items:
                raise RuntimeError(f"boom on {item}")
            self.executed.append((item, handle))
            if self.on_execute is not None:
                self.on_execute(self, item)
        finally:
            self.in_flight -= 1


def make_items(count: int) -> list[str]:
    return [f"item-{index:06d}" for index in range(count)]


@pytest.fixture
def lock_backend() -> InMemoryLockBackend:
    return InMemoryLockBackend()


@pytest.fixture
def make_job(lock_backend: InMemoryLockBackend) -> Callable[..., CrawlJob]:
    def factory(
        items: Iterable[str] = (),
        *,
        engine: Any | None = None,
        query_backend: Any | None = None,
        transactions: Any | None = None,
        shutdown: ShutdownSignal | None = None,
        locks: Any | None = None,
        **config: Any,
    ) -> CrawlJob:
        crawl_config = CrawlConfig(
            query=config.pop("query", "item-"),
            action_name=config.pop("action_name", "recording"),
            **config,
        )
        return CrawlJob(
            crawl_config,
            lock_backend=locks or lock_backend,
            query_backend=query_backend or InMemoryQueryBackend(items),
            transactions=transactions or InMemoryTransactionManager(RetryPolicy(base_seconds=0.0)),
            engine=engine or RecordingEngine(),
            privileges=SystemPrivilegeContext(),
            shutdown=shutdown or ShutdownSignal(),
        )

    return factory
