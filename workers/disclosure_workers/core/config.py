from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = "dev"
    api_base_url: str = "http://localhost:8000"
    worker_id: str = "local-worker"
    api_key: str = "local-worker-key"
    poll_interval_seconds: float = 2.0
    max_backoff_seconds: float = 15.0
    claim_lease_seconds: int = 300
    lease_reaper_interval_seconds: float = 15.0
    lease_reaper_batch_size: int = 100
    concurrency: int = 5
    http_timeout_seconds: float = 30.0
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    wikidata_api_url: str = "https://www.wikidata.org/w/api.php"
    wikidata_language: str = "sv"
    company_api_base_url: str = "http://localhost:3000/api"
    company_api_token: str | None = None
    review_webhook_url: str | None = None
    otel_enabled: bool = True
    otel_service_name: str = "disclosure-pipeline-workers"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="DISCLOSURE_WORKER_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
