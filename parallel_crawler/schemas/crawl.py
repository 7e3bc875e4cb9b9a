from datetime import datetime

from pydantic import BaseModel


class CrawlStatusOut(BaseModel):
    phase: str
    running: bool
    elapsed_ms: int
    processed_count: int
    failed_count: int
    pages_fetched: int
    last_offset: int | None = None
    abort_reason: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
