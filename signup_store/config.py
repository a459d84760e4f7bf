"""
Configuration settings for the sign-up store.

Uses Pydantic Settings to load environment variables for the local data file,
the remote object store, sync/retry timings, logging and the HTTP server.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Local storage
    data_dir: Path = Field(Path("data"), alias="DATA_DIR")
    data_file: str = Field("customers.csv", alias="DATA_FILE")
    min_free_bytes: int = Field(1_048_576, alias="MIN_FREE_BYTES")
    write_max_attempts: int = Field(3, alias="WRITE_MAX_ATTEMPTS")
    write_retry_delay_seconds: float = Field(0.2, alias="WRITE_RETRY_DELAY_SECONDS")

    # Remote object store
    remote_backend: Literal["local", "drive"] = Field("local", alias="REMOTE_BACKEND")
    remote_root: Path = Field(Path("remote"), alias="REMOTE_ROOT")
    remote_folder: str = Field("signups", alias="REMOTE_FOLDER")
    remote_object_name: str = Field("customers.csv", alias="REMOTE_OBJECT_NAME")
    google_service_account: Optional[str] = Field(None, alias="GOOGLE_SERVICE_ACCOUNT")
    remote_timeout_seconds: float = Field(30.0, alias="REMOTE_TIMEOUT_SECONDS")

    # Sync policy
    sync_max_attempts: int = Field(3, alias="SYNC_MAX_ATTEMPTS")
    sync_backoff_seconds: float = Field(1.0, alias="SYNC_BACKOFF_SECONDS")
    sync_backoff_max_seconds: float = Field(10.0, alias="SYNC_BACKOFF_MAX_SECONDS")
    sync_interval_seconds: float = Field(300.0, alias="SYNC_INTERVAL_SECONDS")
    lock_timeout_seconds: Optional[float] = Field(10.0, alias="LOCK_TIMEOUT_SECONDS")
    download_on_request: bool = Field(True, alias="DOWNLOAD_ON_REQUEST")

    # Promotion
    prizes: List[str] = Field(
        ["Free Dip", "Free Cookie", "Free Can", "Free Chipsbag"], alias="PRIZES"
    )

    # HTTP
    http_host: str = Field("0.0.0.0", alias="HTTP_HOST")
    http_port: int = Field(10000, alias="HTTP_PORT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def data_path(self) -> Path:
        return self.data_dir / self.data_file


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
