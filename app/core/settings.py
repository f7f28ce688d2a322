"""Configuration and environment settings for the OFX import pipeline."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the OFX import pipeline."""

    database_url: str = "sqlite:///jobs/ofx_import.db"
    server_host: str = "127.0.0.1"
    server_port: int = 8000
    log_file: str = "jobs/ofx_import.log"
    log_level: str = "INFO"

    worker_pool_size: int = 2
    worker_backend: Literal["process", "thread"] = "process"

    batch_size: int = 100
    batch_pause_seconds: float = 0.005

    sqlite_busy_timeout_seconds: float = 30.0
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.2

    promotion_threshold: int = 70
    allowed_extension: str = ".ofx"
    max_upload_bytes: int = 10 * 1024 * 1024

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_settings() -> "Settings":
    """Return an instance of the application settings."""
    return Settings()
