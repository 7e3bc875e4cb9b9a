from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from typing import Protocol, TypeVar

T = TypeVar("T")

SYSTEM_PRINCIPAL = "system"

_current_principal: ContextVar[str | None] = ContextVar("crawler_principal", default=None)


def current_principal() -> str | None:
    return _current_principal.get()


class PrivilegeContext(Protocol):
    async def run_elevated(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Await ``fn()`` with elevated rights."""


class SystemPrivilegeContext:
    """Runs work as ``principal`` for the duration of one awaited call."""

    def __init__(self, principal: str = SYSTEM_PRINCIPAL) -> None:
        self.principal = principal

    async def run_elevated(self, fn: Callable[[], Awaitable[T]]) -> T:
        token = _current_principal.set(self.principal)
        try:
            return await fn()
        finally:
            _current_principal.reset(token)
