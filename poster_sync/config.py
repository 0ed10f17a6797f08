from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError


def project_root() -> Path:
    return Path(__file__).resolve().parents[1]


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    database_url: str = Field(
        default="postgresql+psycopg://localhost:5432/poster", alias="DATABASE_URL"
    )
    poster_token: SecretStr | None = Field(default=None, alias="POSTER_TOKEN")
    poster_base_url: str = Field(
        default="https://joinposter.com/api", alias="POSTER_BASE_URL"
    )
    poster_timeout_seconds: float = Field(default=30.0, alias="POSTER_TIMEOUT_SECONDS")

    sync_timezone: str = Field(default="UTC", alias="SYNC_TIMEZONE")
    sync_chunk_days: int = Field(default=30, alias="SYNC_CHUNK_DAYS")
    sync_max_per_chunk: int = Field(default=1000, alias="SYNC_MAX_PER_CHUNK")
    sync_interval_seconds: int = Field(default=120, alias="SYNC_INTERVAL_SECONDS")
    sync_lease_seconds: int = Field(default=600, alias="SYNC_LEASE_SECONDS")
    sync_max_instances: int = Field(default=1, alias="SYNC_MAX_INSTANCES")
    sync_coalesce: bool = Field(default=True, alias="SYNC_COALESCE")
    sync_misfire_grace_seconds: int = Field(
        default=30, alias="SYNC_MISFIRE_GRACE_SECONDS"
    )

    notify_webhook_url: str | None = Field(default=None, alias="NOTIFY_WEBHOOK_URL")
    notify_webhook_token: SecretStr | None = Field(
        default=None, alias="NOTIFY_WEBHOOK_TOKEN"
    )

    health_enabled: bool = Field(default=True, alias="HEALTH_ENABLED")
    health_host: str = Field(default="0.0.0.0", alias="HEALTH_HOST")
    health_port: int = Field(default=9100, alias="HEALTH_PORT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings(env_path: Path | None = None) -> Settings:
    env_file = env_path or (project_root() / ".env")
    if env_file.exists():
        load_dotenv(env_file, override=False)
    try:
        return Settings.model_validate(dict(os.environ))
    except ValidationError as exc:
        raise RuntimeError(
            "Invalid or missing environment variables. Copy `.env.example` to `.env` and edit it."
        ) from exc
