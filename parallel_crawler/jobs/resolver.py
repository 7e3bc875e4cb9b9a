from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from parallel_crawler.core.errors import ResolutionFailure
from parallel_crawler.services.action_engines import ActionEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResolvedAction:
    name: str
    handle: Any
    resolved_at: datetime


class ActionResolver:
    """Resolve the configured action once per run and hand out the cached value.

    The cached value is assigned exactly once, after it is fully built, and
    only while holding the lock; readers on the fast path either see ``None``
    or the finished instance.
    """

    def __init__(self, engine: ActionEngine, action_name: str) -> None:
        self.engine = engine
        self.action_name = action_name
        self.resolve_count = 0
        self._resolved: ResolvedAction | None = None
        self._lock = asyncio.Lock()

    @property
    def resolved(self) -> ResolvedAction | None:
        return self._resolved

    def reset(self) -> None:
        """Forget the cached action; called at the start of every run."""
        self._resolved = None
        self.resolve_count = 0
        # A contended asyncio.Lock binds to the running loop.
        self._lock = asyncio.Lock()

    async def resolve(self, item: Any = None) -> ResolvedAction:
        resolved = self._resolved
        if resolved is not None:
            return resolved

        async with self._lock:
            if self._resolved is not None:
                return self._resolved
            self.resolve_count += 1
            try:
                handle = await self.engine.create_action(self.action_name)
            except Exception as exc:
                raise ResolutionFailure(item, f"cannot resolve action {self.action_name!r}: {exc}") from exc
            resolved = ResolvedAction(
                name=self.action_name,
                handle=handle,
                resolved_at=datetime.now(timezone.utc),
            )
            self._resolved = resolved
            logger.info("resolved crawl action name=%s", self.action_name)
            return resolved
