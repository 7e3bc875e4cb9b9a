from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    query: str | None = None
    action_name: str | None = None
    action_engine: Literal["script", "http"] = "script"
    action_base_package: str = "parallel_crawler.actions"
    action_http_base_url: str | None = None
    action_http_timeout_seconds: float = 10.0
    page_size: int = Field(default=5000, gt=0)
    concurrency: int = Field(default=4, ge=1)
    lease_name: str = "parallel-crawler:crawl"
    lease_ttl_ms: int = Field(default=10000, gt=0)
    lease_refresh_interval_ms: int = Field(default=5000, gt=0)
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    transaction_max_attempts: int = 3
    transaction_retry_base_seconds: float = 0.1
    transaction_retry_max_seconds: float = 2.0
    progress_log_interval: int = 500
    run_interval_seconds: float = 300.0
    api_run_scheduler: bool = True
    otel_enabled: bool = True
    otel_service_name: str = "parallel-crawler"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CRAWLER_", extra="ignore")

    @model_validator(mode="after")
    def _check_lease_timing(self) -> "Settings":
        if self.lease_refresh_interval_ms >= self.lease_ttl_ms:
            raise ValueError("lease_refresh_interval_ms must be smaller than lease_ttl_ms")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
