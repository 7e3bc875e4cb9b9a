from fastapi import APIRouter, Depends, HTTPException, status

from parallel_crawler.jobs.crawl_job import CrawlJob
from parallel_crawler.schemas.crawl import CrawlStatusOut
from parallel_crawler.services.runtime import get_runtime

router = APIRouter()


def get_crawl_job() -> CrawlJob:
    try:
        return get_runtime().job
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"crawl job not configured: {exc}",
        ) from exc


@router.get("/status", response_model=CrawlStatusOut)
async def crawl_status(job: CrawlJob = Depends(get_crawl_job)) -> CrawlStatusOut:
    state = job.state()
    return CrawlStatusOut(
        phase=state.phase.value,
        running=job.is_running(),
        elapsed_ms=state.elapsed_ms,
        processed_count=state.processed_count,
        failed_count=state.failed_count,
        pages_fetched=state.pages_fetched,
        last_offset=state.last_offset,
        abort_reason=state.abort_reason,
        start_time=state.start_time,
        end_time=state.end_time,
    )
