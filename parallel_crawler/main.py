from __future__ import annotations

import asyncio
import logging
import random

from parallel_crawler.core.config import Settings, get_settings
from parallel_crawler.core.telemetry import (
    configure_crawler_logging,
    setup_crawler_telemetry,
    shutdown_crawler_telemetry,
)
from parallel_crawler.services.runtime import CrawlerRuntime, build_runtime

logger = logging.getLogger(__name__)


async def run_scheduler(runtime: CrawlerRuntime, settings: Settings) -> None:
    """Trigger the crawl every ``run_interval_seconds`` until shutdown is requested."""
    backoff = settings.run_interval_seconds
    while not runtime.shutdown.is_set():
        try:
            state = await runtime.job.run()
            logger.debug("scheduled crawl returned phase=%s", state.phase.value)
            backoff = settings.run_interval_seconds
            sleep_for = settings.run_interval_seconds
        except Exception as exc:  # pragma: no cover - bootstrap robustness
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(backoff * (2.0 + jitter), settings.run_interval_seconds * 4)
            logger.exception("scheduled crawl failed: %s; retry in %.1fs", exc, sleep_for)
            backoff = sleep_for
        await runtime.shutdown.wait(timeout=sleep_for)


async def run_worker() -> None:
    settings = get_settings()
    configure_crawler_logging()
    telemetry_runtime = setup_crawler_telemetry(settings)
    runtime = build_runtime(settings)
    runtime.shutdown.install()

    try:
        await runtime.prepare()
        await run_scheduler(runtime, settings)
    finally:
        await runtime.close()
        shutdown_crawler_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
