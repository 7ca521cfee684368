"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Sentry
    sentry_dsn: str = ""

    # Operator endpoints (manual trigger, metrics). Empty disables them.
    admin_api_key: str = ""

    # Push gateway (delivery transport). Empty = log-only transport.
    push_gateway_url: str = ""
    push_gateway_token: str = ""
    push_timeout_seconds: float = 10.0
    push_icon_url: str = "/icons/icon-192x192.png"
    push_badge_url: str = "/icons/badge-72x72.png"

    # Workers (toggle without code deploys)
    scheduler_enabled: bool = True
    scheduler_run_hour_utc: int = 8
    job_processor_enabled: bool = True
    job_concurrency: int = 5
    metrics_enabled: bool = True
    metrics_run_hour_utc: int = 23

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
