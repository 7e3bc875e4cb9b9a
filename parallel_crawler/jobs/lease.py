from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from parallel_crawler.core.errors import LockUnavailable
from parallel_crawler.services.lock_backend import LockBackend

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Lease:
    resource_name: str
    token: str
    ttl_ms: int
    refresh_interval_ms: int | None = None
    active: bool = True
    released: bool = False


class LeaseCoordinator:
    """Acquire, keep alive and release one named cluster-wide lease."""

    def __init__(self, backend: LockBackend) -> None:
        self.backend = backend
        self._refresh_task: asyncio.Task[None] | None = None
        self._stop_refresh: asyncio.Event | None = None

    async def acquire(self, name: str, ttl_ms: int) -> Lease:
        token = await self.backend.acquire(name, ttl_ms)
        if token is None:
            raise LockUnavailable(name)
        logger.debug("lease acquired name=%s", name)
        return Lease(resource_name=name, token=token, ttl_ms=ttl_ms)

    def start_refresh(
        self,
        lease: Lease,
        interval_ms: int,
        liveness_check: Callable[[], bool],
        on_lost: Callable[[], None],
    ) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            raise RuntimeError("lease refresh already running")
        lease.refresh_interval_ms = interval_ms
        self._stop_refresh = asyncio.Event()
        self._refresh_task = asyncio.create_task(
            self._refresh_loop(lease, interval_ms / 1000.0, liveness_check, on_lost, self._stop_refresh),
            name=f"lease-refresh:{lease.resource_name}",
        )

    async def stop_refresh(self) -> None:
        if self._stop_refresh is not None:
            self._stop_refresh.set()
        task = self._refresh_task
        self._refresh_task = None
        if task is not None:
            await task

    async def release(self, lease: Lease) -> None:
        if lease.released:
            return
        lease.released = True
        lease.active = False
        try:
            await self.backend.release(lease.token, lease.resource_name)
        except Exception as exc:
            # The lease expires on its own once refreshes stop.
            logger.warning("failed to release lease name=%s: %s", lease.resource_name, exc)
            return
        logger.debug("lease released name=%s", lease.resource_name)

    async def _refresh_loop(
        self,
        lease: Lease,
        interval_seconds: float,
        liveness_check: Callable[[], bool],
        on_lost: Callable[[], None],
        stop: asyncio.Event,
    ) -> None:
        while True:
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
                return
            except asyncio.TimeoutError:
                pass

            if stop.is_set() or not liveness_check():
                return

            try:
                refreshed = await self.backend.refresh(lease.token, lease.resource_name, lease.ttl_ms)
            except Exception as exc:
                logger.warning("lease refresh failed name=%s: %s", lease.resource_name, exc)
                refreshed = False

            if not refreshed:
                lease.active = False
                logger.warning("lease lost name=%s", lease.resource_name)
                on_lost()
                return
            logger.debug("lease refreshed name=%s", lease.resource_name)
