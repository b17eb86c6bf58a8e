from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiToken(BaseModel):
    subject: str
    role: str = "worker"


class Settings(BaseSettings):
    app_name: str = "disclosure-pipeline-api"
    environment: str = "dev"
    api_key_header: str = "X-API-Key"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    job_max_attempts: int = 3
    job_retry_base_seconds: int = 30
    job_retry_max_seconds: int = 600
    api_tokens: dict[str, ApiToken] = {
        "local-worker-key": ApiToken(subject="local-worker", role="worker"),
        "local-reviewer-key": ApiToken(subject="local-reviewer", role="reviewer"),
    }
    otel_enabled: bool = True
    otel_service_name: str = "disclosure-pipeline-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="DISCLOSURE_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
