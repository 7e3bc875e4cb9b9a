from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from parallel_crawler.core.errors import PageFetchFailure
from parallel_crawler.services.query_backend import ItemRef, QueryBackend
from parallel_crawler.services.transactions import TransactionManager


@dataclass(frozen=True, slots=True)
class Page:
    offset: int
    size: int
    items: tuple[ItemRef, ...]

    @property
    def is_last(self) -> bool:
        return len(self.items) < self.size

    def __len__(self) -> int:
        return len(self.items)


class ResultPager:
    """Fetch fixed-size windows of query results inside a read transaction.

    Results are not snapshotted across pages: items added or removed by the
    action between two fetches can shift the window, so a run may skip or
    repeat items.
    """

    def __init__(self, backend: QueryBackend, transactions: TransactionManager) -> None:
        self.backend = backend
        self.transactions = transactions

    async def fetch_page(self, query: str, offset: int, size: int) -> Page:
        if offset < 0:
            raise ValueError("offset must be >= 0")
        if size <= 0:
            raise ValueError("size must be > 0")

        async def read(connection: Any) -> list[ItemRef]:
            return await self.backend.query(query, offset, size, connection=connection)

        try:
            results = await self.transactions.run_in_transaction(read, read_only=True)
        except Exception as exc:
            raise PageFetchFailure(offset, exc) from exc
        return Page(offset=offset, size=size, items=tuple(results[:size]))
