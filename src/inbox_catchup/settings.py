"""Runtime settings loaded from the environment (and an optional .env file)."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from inbox_catchup.constants import (
    DATA_DIR,
    DIGEST_DEFAULT_HOURS,
    DIGEST_MAX_MESSAGES,
    DIGEST_WORKERS,
    HISTORY_PAGE_SIZE,
)


class Settings(BaseSettings):
    """Application settings. Every field can be set as INBOX_CATCHUP_<NAME>."""

    model_config = SettingsConfigDict(
        env_prefix="INBOX_CATCHUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Storage
    data_dir: Path = DATA_DIR
    database_path: Path | None = None
    client_secrets_path: Path | None = None

    # Scheduled trigger
    cron_secret: SecretStr | None = None

    # Summarization
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-mini"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Sync tuning
    history_page_size: int = Field(default=HISTORY_PAGE_SIZE, ge=1, le=500)
    digest_max_messages: int = Field(default=DIGEST_MAX_MESSAGES, ge=1)
    digest_default_hours: int = Field(default=DIGEST_DEFAULT_HOURS, ge=1)
    digest_workers: int = Field(default=DIGEST_WORKERS, ge=1)

    @property
    def resolved_database_path(self) -> Path:
        return self.database_path or self.data_dir / "accounts.db"

    @property
    def resolved_client_secrets_path(self) -> Path:
        return self.client_secrets_path or self.data_dir / "credentials.json"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings object."""
    return Settings()
