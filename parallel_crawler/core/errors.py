from __future__ import annotations

from typing import Any


class CrawlerError(Exception):
    """Base crawler error."""


class LockUnavailable(CrawlerError):
    """Raised when another instance already holds the crawl lease."""

    def __init__(self, name: str) -> None:
        super().__init__(f"lease {name!r} is held by another instance")
        self.name = name


class ShutdownRequested(CrawlerError):
    """Raised at a page boundary once process shutdown has been signalled."""


class PageFetchFailure(CrawlerError):
    """Raised when a result page cannot be fetched."""

    def __init__(self, offset: int, cause: BaseException) -> None:
        super().__init__(f"failed to fetch page at offset={offset}: {cause}")
        self.offset = offset


class ItemActionFailure(CrawlerError):
    """Raised when the configured action fails for a single item."""

    def __init__(self, item: Any, message: str) -> None:
        super().__init__(message)
        self.item = item


class ResolutionFailure(ItemActionFailure):
    """Raised when the configured action cannot be resolved."""


class ActionNotFoundError(CrawlerError):
    """Raised by an action engine when no action matches the given name."""


class RetryableError(CrawlerError):
    """Raised by collaborators to request another transactional attempt."""


class BackendUnavailableError(CrawlerError):
    """Raised when the database is unavailable or not configured."""
