"""Application configuration using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ALEXANDRIA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Alexandria"
    version: str = "0.1.0"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # Paths
    config_path: Path = Field(
        default=Path("/config"),
        description="Path for configuration files and database",
    )
    storage_path: Path = Field(
        default=Path("/data/storage"),
        description="Managed storage root for models without a library, and thumbnails",
    )
    temp_path: Path = Field(
        default=Path("/data/tmp"),
        description="Uploaded archives and per-job scratch extraction directories",
    )

    # Database
    database_url: str | None = Field(
        default=None,
        description="Database connection URL (defaults to SQLite under config_path)",
    )

    # Worker pools
    ingestion_concurrency: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Number of parallel single-archive ingestion workers",
    )
    folder_import_concurrency: Literal[1] = Field(
        default=1,
        description="Folder-import jobs fan out over many models and always run one at a time",
    )
    worker_poll_interval: float = Field(default=1.0, gt=0)
    stale_job_minutes: int = Field(default=60, ge=1)

    # Retry policy
    job_max_attempts: int = Field(default=3, ge=1)
    job_backoff_base_seconds: float = Field(
        default=1.0,
        gt=0,
        description="First retry delay; doubles on every further attempt",
    )
    job_backoff_max_seconds: float = Field(default=300.0, gt=0)

    # Placement
    ingestion_import_strategy: Literal["hardlink", "copy", "move"] = Field(
        default="move",
        description="Strategy used to place files extracted from uploaded archives",
    )

    # Thumbnails
    thumbnail_grid_size: int = Field(default=400, ge=16)
    thumbnail_detail_size: int = Field(default=800, ge=16)
    thumbnail_quality: int = Field(default=80, ge=1, le=100)

    @property
    def thumbnails_path(self) -> Path:
        """Root of the rendered thumbnails tree."""
        return self.storage_path / "thumbnails"

    @property
    def db_path(self) -> Path:
        """Get the SQLite database file path."""
        return self.config_path / "alexandria.db"


# Global settings instance
settings = Settings()
