from contextlib import asynccontextmanager
import asyncio
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from parallel_crawler.api.router import api_router
from parallel_crawler.core.config import get_settings
from parallel_crawler.core.telemetry import (
    configure_crawler_logging,
    setup_crawler_telemetry,
    shutdown_crawler_telemetry,
)
from parallel_crawler.main import run_scheduler
from parallel_crawler.services.runtime import get_runtime

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_crawler_logging()
    telemetry_runtime = setup_crawler_telemetry(settings)
    scheduler: asyncio.Task[None] | None = None
    if settings.api_run_scheduler and not (settings.query and settings.action_name):
        logger.warning("crawl scheduler disabled: CRAWLER_QUERY and CRAWLER_ACTION_NAME are required")
    elif settings.api_run_scheduler:
        runtime = get_runtime()
        await runtime.prepare()
        scheduler = asyncio.create_task(run_scheduler(runtime, settings), name="crawl-scheduler")
    try:
        yield
    finally:
        if scheduler is not None:
            runtime = get_runtime()
            # Lets the current page finish and releases the lease.
            runtime.shutdown.request()
            await scheduler
            await runtime.close()
            get_runtime.cache_clear()
        shutdown_crawler_telemetry(telemetry_runtime)


app = FastAPI(title=settings.otel_service_name, lifespan=lifespan)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
