from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from typing import Protocol

from parallel_crawler.services.database import PostgresDatabase

LEASE_TABLE_DDL = """create table if not exists crawl_leases (
  name text primary key,
  token text not null,
  acquired_at timestamptz not null default now(),
  expires_at timestamptz not null
);
"""


class LockBackend(Protocol):
    async def acquire(self, name: str, ttl_ms: int) -> str | None:
        """Return a fresh token, or ``None`` when an unexpired lease exists."""

    async def refresh(self, token: str, name: str, ttl_ms: int) -> bool:
        """Extend the lease if ``token`` still owns it."""

    async def release(self, token: str, name: str) -> None:
        """Drop the lease if ``token`` still owns it."""


class InMemoryLockBackend:
    """Process-local lock table; share one instance to simulate a cluster."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._leases: dict[str, tuple[str, float]] = {}
        self.refresh_count = 0

    def holder(self, name: str) -> str | None:
        lease = self._leases.get(name)
        if lease is None or lease[1] <= self._clock():
            return None
        return lease[0]

    async def acquire(self, name: str, ttl_ms: int) -> str | None:
        if self.holder(name) is not None:
            return None
        token = uuid.uuid4().hex
        self._leases[name] = (token, self._clock() + ttl_ms / 1000.0)
        return token

    async def refresh(self, token: str, name: str, ttl_ms: int) -> bool:
        self.refresh_count += 1
        if self.holder(name) != token:
            return False
        self._leases[name] = (token, self._clock() + ttl_ms / 1000.0)
        return True

    async def release(self, token: str, name: str) -> None:
        lease = self._leases.get(name)
        if lease is not None and lease[0] == token:
            del self._leases[name]


class PostgresLockBackend:
    def __init__(self, database: PostgresDatabase) -> None:
        self.database = database

    async def ensure_schema(self) -> None:
        pool = await self.database.get_pool()
        await pool.execute(LEASE_TABLE_DDL)

    async def acquire(self, name: str, ttl_ms: int) -> str | None:
        pool = await self.database.get_pool()
        token = uuid.uuid4().hex
        acquired = await pool.fetchval(
            """
            insert into crawl_leases (name, token, acquired_at, expires_at)
            values ($1, $2, now(), now() + ($3::bigint * interval '1 millisecond'))
            on conflict (name) do update
              set token = excluded.token,
                  acquired_at = excluded.acquired_at,
                  expires_at = excluded.expires_at
              where crawl_leases.expires_at <= now()
            returning token
            """,
            name,
            token,
            ttl_ms,
        )
        return acquired if acquired == token else None

    async def refresh(self, token: str, name: str, ttl_ms: int) -> bool:
        pool = await self.database.get_pool()
        refreshed = await pool.fetchval(
            """
            update crawl_leases
            set expires_at = now() + ($3::bigint * interval '1 millisecond')
            where name = $1
              and token = $2
              and expires_at > now()
            returning name
            """,
            name,
            token,
            ttl_ms,
        )
        return refreshed is not None

    async def release(self, token: str, name: str) -> None:
        pool = await self.database.get_pool()
        await pool.execute("delete from crawl_leases where name = $1 and token = $2", name, token)
