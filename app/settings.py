from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from store.dedup import DedupPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    db_path: Path = Field(default=Path("data/traffic-watch.db"), validation_alias="DB_PATH")
    feeds_file: Path = Field(
        default=Path("feeds/sources.yaml"), validation_alias="FEEDS_FILE"
    )

    api_key: str = Field(default="default_key", validation_alias="API_KEY")
    notify_url: str = Field(
        default="http://localhost:3002/api/notify", validation_alias="NOTIFY_URL"
    )
    frontend_url: str = Field(
        default="http://localhost:3000", validation_alias="FRONTEND_URL"
    )
    datamall_api_key: str | None = Field(
        default=None, validation_alias="DATAMALL_API_KEY"
    )

    poll_interval_seconds: int = Field(
        default=120, ge=1, validation_alias="POLL_INTERVAL_SECONDS"
    )
    fetch_concurrency: int = Field(default=4, ge=1, validation_alias="FETCH_CONCURRENCY")
    dedup_policy: DedupPolicy = Field(
        default=DedupPolicy.TRANSIENT, validation_alias="DEDUP_POLICY"
    )

    user_agent: str = Field(default="traffic-watch/0.1", validation_alias="USER_AGENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
