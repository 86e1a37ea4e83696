from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "internhub-api"
    environment: str = "dev"
    repository_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    realtime_push_timeout_seconds: float = 5.0
    realtime_ping_interval_seconds: float = 25.0
    messages_page_max_limit: int = 500
    otel_enabled: bool = True
    otel_service_name: str = "internhub-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="IH_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
