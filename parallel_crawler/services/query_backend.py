from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Any, Protocol

ItemRef = str


class QueryBackend(Protocol):
    async def query(self, predicate: str, offset: int, limit: int, *, connection: Any) -> list[ItemRef]:
        """Return matches for ``predicate`` starting at ``offset``, at most ``limit`` of them."""


class InMemoryQueryBackend:
    """Query backend over a mutable item list.

    ``predicate`` is matched as a substring of each item unless a custom
    ``matcher`` is supplied; ``"*"`` matches everything.
    """

    def __init__(
        self,
        items: Iterable[ItemRef] = (),
        *,
        matcher: Callable[[str, ItemRef], bool] | None = None,
    ) -> None:
        self.items: list[ItemRef] = list(items)
        self.matcher = matcher or _substring_match
        self.calls: list[tuple[str, int, int]] = []

    async def query(self, predicate: str, offset: int, limit: int, *, connection: Any) -> list[ItemRef]:
        self.calls.append((predicate, offset, limit))
        matches = [item for item in self.items if self.matcher(predicate, item)]
        return matches[offset : offset + limit]


class PostgresQueryBackend:
    """Treats the predicate as a select whose first column is the item ref.

    The predicate should carry its own ``order by``; without one PostgreSQL
    gives no stable order across windows.
    """

    async def query(self, predicate: str, offset: int, limit: int, *, connection: Any) -> list[ItemRef]:
        statement = f"select * from ({_strip_terminator(predicate)}) as crawl_selection offset $1 limit $2"
        rows: Sequence[Any] = await connection.fetch(statement, offset, limit)
        return [str(row[0]) for row in rows]


def _substring_match(predicate: str, item: ItemRef) -> bool:
    return predicate == "*" or predicate in item


def _strip_terminator(predicate: str) -> str:
    return predicate.strip().rstrip(";").strip()
