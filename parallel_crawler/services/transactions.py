from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from asyncpg import exceptions as pg_exc  # type: ignore[import-untyped]

from parallel_crawler.core.errors import RetryableError
from parallel_crawler.services.database import PostgresDatabase

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    RetryableError,
    pg_exc.SerializationError,
    pg_exc.DeadlockDetectedError,
)


class TransactionManager(Protocol):
    async def run_in_transaction(
        self,
        fn: Callable[[Any], Awaitable[T]],
        *,
        read_only: bool = False,
    ) -> T:
        """Run ``fn(connection)`` in a transaction, retrying transient conflicts."""

    async def is_read_only(self) -> bool:
        """Report whether the backing store currently refuses writes."""


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_seconds: float = 0.1
    max_seconds: float = 2.0

    def delay_for(self, attempt: int) -> float:
        jitter = random.uniform(0.0, 0.5)
        return min(self.base_seconds * (2 ** (attempt - 1)) * (1.0 + jitter), self.max_seconds)


class RetryingTransactionManager:
    """Shared retry loop; subclasses provide a single transactional attempt."""

    def __init__(self, retry_policy: RetryPolicy | None = None) -> None:
        self.retry_policy = retry_policy or RetryPolicy()

    async def run_in_transaction(
        self,
        fn: Callable[[Any], Awaitable[T]],
        *,
        read_only: bool = False,
    ) -> T:
        max_attempts = max(1, self.retry_policy.max_attempts)
        attempt = 1
        while True:
            try:
                return await self._attempt(fn, read_only=read_only)
            except RETRYABLE_ERRORS as exc:
                if attempt >= max_attempts:
                    logger.warning("transaction failed after %s attempts: %s", attempt, exc)
                    raise
                delay = self.retry_policy.delay_for(attempt)
                logger.debug("retrying transaction attempt=%s in %.2fs: %s", attempt + 1, delay, exc)
                await asyncio.sleep(delay)
                attempt += 1

    async def is_read_only(self) -> bool:
        return False

    async def _attempt(self, fn: Callable[[Any], Awaitable[T]], *, read_only: bool) -> T:
        raise NotImplementedError


class InMemoryTransactionManager(RetryingTransactionManager):
    """No real isolation: ``fn`` receives ``None`` as its connection."""

    def __init__(self, retry_policy: RetryPolicy | None = None, *, read_only: bool = False) -> None:
        super().__init__(retry_policy)
        self.read_only = read_only
        self.attempts = 0

    async def is_read_only(self) -> bool:
        return self.read_only

    async def _attempt(self, fn: Callable[[Any], Awaitable[T]], *, read_only: bool) -> T:
        self.attempts += 1
        return await fn(None)


class PostgresTransactionManager(RetryingTransactionManager):
    def __init__(self, database: PostgresDatabase, retry_policy: RetryPolicy | None = None) -> None:
        super().__init__(retry_policy)
        self.database = database

    async def is_read_only(self) -> bool:
        pool = await self.database.get_pool()
        # A hot standby accepts reads only.
        return bool(await pool.fetchval("select pg_is_in_recovery()"))

    async def _attempt(self, fn: Callable[[Any], Awaitable[T]], *, read_only: bool) -> T:
        pool = await self.database.get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction(readonly=read_only):
                return await fn(conn)
