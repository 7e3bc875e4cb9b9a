from __future__ import annotations

import asyncio

import asyncpg  # type: ignore[import-untyped]

from parallel_crawler.core.errors import BackendUnavailableError


class PostgresDatabase:
    """Lazily created asyncpg pool shared by the PostgreSQL collaborators."""

    def __init__(self, database_url: str | None, min_pool_size: int = 1, max_pool_size: int = 10) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max(min_pool_size, max_pool_size)
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise BackendUnavailableError("CRAWLER_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is not None:
                return self._pool
            try:
                self._pool = await asyncpg.create_pool(
                    dsn=self.database_url,
                    min_size=self.min_pool_size,
                    max_size=self.max_pool_size,
                    command_timeout=15,
                )
            except Exception as exc:  # pragma: no cover - depends on environment
                raise BackendUnavailableError("database unavailable") from exc
            return self._pool

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
