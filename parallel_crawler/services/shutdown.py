from __future__ import annotations

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)


class ShutdownSignal:
    """Process-wide shutdown flag, polled by the crawl loop at page boundaries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def is_set(self) -> bool:
        return self._event.is_set()

    def request(self) -> None:
        if not self._event.is_set():
            logger.info("shutdown requested")
        self._event.set()

    async def wait(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for signame in ("SIGINT", "SIGTERM"):
            loop.add_signal_handler(getattr(signal, signame), self.request)
