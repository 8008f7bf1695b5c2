"""
Configuration management for the garment design pipeline.

Uses Pydantic Settings to load configuration from environment variables
and an optional .env file.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_list(value: str | List[str]) -> List[str]:
    """Accept a JSON array or a comma-separated string for list settings."""
    if not isinstance(value, str):
        return value
    if value.lstrip().startswith("["):
        return json.loads(value)
    return [item.strip() for item in value.split(",") if item.strip()]


class Config(BaseSettings):
    """
    Configuration class for the design pipeline API and worker.

    Loads settings from environment variables and optional .env file.
    All paths have sensible defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = Field(default="garment-design-pipeline", description="Application name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log output format")

    # Persistence and notifications
    database_url: str = Field(
        default="sqlite:///data/designs.db",
        description="SQLAlchemy URL of the job record store"
    )
    redis_url: str = Field(
        default="redis://redis:6379/0",
        description="Redis URL used for job change notifications"
    )
    notifier_backend: Literal["redis", "memory"] = Field(
        default="redis",
        description="Change-notification transport (memory only works in a single process)"
    )
    worker_mode: Literal["inline", "external"] = Field(
        default="external",
        description="Run jobs inside the API process or leave them for run_worker"
    )

    # Upload settings
    upload_dir: Path = Field(
        default=Path("uploads"),
        description="Directory for uploaded garment and swatch images"
    )
    max_image_size_mb: int = Field(
        default=10,
        description="Maximum image size in MB"
    )
    supported_image_formats: Annotated[List[str], NoDecode] = Field(
        default=[".jpeg", ".jpg", ".png", ".webp"],
        description="Accepted image file extensions"
    )

    # Pipeline settings
    stages_config: Path = Field(
        default=Path("config/stages.yaml"),
        description="YAML file with stage titles, descriptions and simulated durations"
    )
    stage_delay_scale: float = Field(
        default=1.0,
        ge=0.0,
        description="Multiplier applied to simulated stage durations (0 disables waiting)"
    )
    poll_interval_sec: float = Field(
        default=5.0,
        description="Worker sleep between polls when no job is pending"
    )
    webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL for terminal job notifications"
    )
    recover_stuck_jobs: bool = Field(
        default=True,
        description="Fail jobs left processing by a previous worker on startup"
    )

    # API settings
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")
    cors_origins: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins allowed by CORS"
    )
    create_rate_limit: str = Field(
        default="10/minute",
        description="slowapi rate limit for design submissions"
    )

    @field_validator("upload_dir", "stages_config", mode="before")
    @classmethod
    def validate_paths(cls, v: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(v) if isinstance(v, str) else v

    @field_validator("supported_image_formats", mode="before")
    @classmethod
    def validate_formats(cls, v: str | List[str]) -> List[str]:
        """Ensure formats start with a dot and are lowercase."""
        v = _parse_list(v)
        return [(fmt if fmt.startswith(".") else f".{fmt}").lower() for fmt in v]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_origins(cls, v: str | List[str]) -> List[str]:
        """Parse comma-separated origins."""
        return _parse_list(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @property
    def max_image_bytes(self) -> int:
        return self.max_image_size_mb * 1024 * 1024

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        if self.database_url.startswith("sqlite:///"):
            db_path = Path(self.database_url[len("sqlite:///"):])
            if db_path.parent != Path(""):
                db_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache()
def get_config() -> Config:
    """
    Get cached configuration instance.

    Returns:
        Config instance loaded from environment
    """
    return Config()
