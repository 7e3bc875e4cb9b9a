from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from importlib import import_module
from typing import Any, Protocol

import httpx

from parallel_crawler.core.errors import ActionNotFoundError, RetryableError

RETRYABLE_STATUS_CODES = {408, 429, 502, 503, 504}


class ActionEngine(Protocol):
    async def create_action(self, name: str) -> Any:
        """Resolve ``name`` into an invocable handle."""

    async def execute(self, handle: Any, item: str, *, connection: Any = None) -> Any:
        """Run ``handle`` against one item."""


@dataclass(frozen=True, slots=True)
class ScriptAction:
    name: str
    module: str
    func: Callable[..., Any]


class ScriptActionEngine:
    """Resolve actions to Python modules exposing ``run(item, *, connection)``.

    Bare names are looked up under ``base_package`` (``"touch-items.py"`` maps
    to ``<base_package>.touch_items``); ``"pkg.module:attr"`` names an
    importable callable directly.
    """

    def __init__(self, base_package: str = "parallel_crawler.actions") -> None:
        self.base_package = base_package

    async def create_action(self, name: str) -> ScriptAction:
        module_name, _, attr = name.partition(":")
        if not attr:
            module_name = _script_to_module(name, package=self.base_package)
        try:
            module = import_module(module_name)
        except ModuleNotFoundError as exc:
            raise ActionNotFoundError(f"action module '{module_name}' could not be imported") from exc

        func = getattr(module, attr or "run", None)
        if not callable(func):
            raise ActionNotFoundError(f"action module '{module_name}' must expose a '{attr or 'run'}' callable")
        return ScriptAction(name=name, module=module_name, func=func)

    async def execute(self, handle: ScriptAction, item: str, *, connection: Any = None) -> Any:
        if inspect.iscoroutinefunction(handle.func):
            return await handle.func(item, connection=connection)
        # Plain scripts run off the event loop so a blocking item does not stall the batch.
        result = await asyncio.to_thread(handle.func, item, connection=connection)
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass(frozen=True, slots=True)
class HttpAction:
    name: str
    url: str


class HttpActionEngine:
    """POST each item to ``{base_url}/actions/{name}``."""

    def __init__(
        self,
        base_url: str | None,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout_seconds = timeout_seconds
        self.client = client

    async def create_action(self, name: str) -> HttpAction:
        if not self.base_url:
            raise ActionNotFoundError("CRAWLER_ACTION_HTTP_BASE_URL is required for the http action engine")
        action_name = name.strip().strip("/")
        if not action_name:
            raise ActionNotFoundError("action name must be a non-empty string")
        return HttpAction(name=action_name, url=f"{self.base_url}/actions/{action_name}")

    async def execute(self, handle: HttpAction, item: str, *, connection: Any = None) -> Any:
        if self.client is not None:
            response = await self._post(self.client, handle, item)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as temp_client:
                response = await self._post(temp_client, handle, item)
        if not response.content:
            return None
        return response.json()

    async def _post(self, client: httpx.AsyncClient, handle: HttpAction, item: str) -> httpx.Response:
        try:
            response = await client.post(handle.url, json={"item": item})
        except httpx.TransportError as exc:
            raise RetryableError(f"action {handle.name} transport error: {exc}") from exc
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise RetryableError(f"action {handle.name} returned status={response.status_code}")
        response.raise_for_status()
        return response


def _script_to_module(script: str, *, package: str) -> str:
    module = script[:-3] if script.endswith(".py") else script
    module = module.strip("/").replace("/", ".").replace("-", "_")
    return f"{package}.{module}" if not module.startswith(f"{package}.") else module
