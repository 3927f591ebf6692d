"""Configuration and environment settings for the migration tool."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, SecretStr, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FRONT_BASE_URL = "https://api2.frontapp.com"


class FrontSettings(BaseSettings):
    """Front API connection settings."""

    model_config = SettingsConfigDict(extra="forbid")

    api_key: SecretStr
    base_url: Annotated[str, Field(min_length=1)] = DEFAULT_FRONT_BASE_URL
    timeout_seconds: Annotated[float, Field(gt=0, le=600)] = 30.0
    page_size: Annotated[int, Field(ge=1, le=100)] = 100

    @field_validator("api_key")
    @classmethod
    def _api_key_not_blank(cls, value: SecretStr) -> SecretStr:
        """Reject empty or whitespace-only API tokens.

        Args:
            value: Raw API token.

        Returns:
            The stripped token.

        Raises:
            ValueError: If the token is blank.
        """
        stripped = value.get_secret_value().strip()
        if not stripped:
            raise ValueError("api_key must not be blank")
        return SecretStr(stripped)

    @field_validator("base_url")
    @classmethod
    def _base_url_strip_slash(cls, value: str) -> str:
        """Drop any trailing slash from the API base URL."""
        return value.strip().rstrip("/")


class GmailSettings(BaseSettings):
    """Gmail OAuth settings."""

    model_config = SettingsConfigDict(extra="forbid")

    user_id: Annotated[str, Field(min_length=1)] = "me"
    credentials_file: Path = Path("credentials.json")
    token_file: Path = Path(".secrets/gmail-token.json")


class MigrationSettings(BaseSettings):
    """Run configuration for a single migration job."""

    model_config = SettingsConfigDict(extra="forbid")

    batch_size: Annotated[int, Field(ge=1, le=1000)] = 10
    dry_run: bool = True
    skip_archived: bool = False
    inbox_id: str | None = None
    batch_delay_s: Annotated[float, Field(ge=0, le=60)] = 1.0
    hydrate_messages: bool = False

    @field_validator("inbox_id")
    @classmethod
    def _blank_inbox_is_none(cls, value: str | None) -> str | None:
        """Treat a blank inbox filter as no filter."""
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None


class RetrySettings(BaseSettings):
    """Backoff envelope shared by the Front and Gmail clients."""

    model_config = SettingsConfigDict(extra="forbid")

    attempts: Annotated[int, Field(ge=1, le=10)] = 3
    base_delay_s: Annotated[float, Field(ge=0, le=30)] = 0.5
    max_delay_s: Annotated[float, Field(ge=0, le=300)] = 20.0
    jitter_s: Annotated[float, Field(ge=0, le=5)] = 0.1


class ConcurrencySettings(BaseSettings):
    """Outbound call limits for each remote API."""

    model_config = SettingsConfigDict(extra="forbid")

    front_requests: Annotated[int, Field(ge=1, le=10)] = 2
    gmail_requests: Annotated[int, Field(ge=1, le=50)] = 5


class StorageSettings(BaseSettings):
    """Settings for report storage."""

    model_config = SettingsConfigDict(extra="forbid")

    root_dir: Path = Path(".")
    reports_dir_override: Path | None = None

    @field_validator("root_dir")
    @classmethod
    def _root_dir_to_absolute(cls, value: Path) -> Path:
        """Resolve the storage root directory to an absolute path."""
        return value.expanduser().resolve()

    @field_validator("reports_dir_override")
    @classmethod
    def _paths_to_absolute(cls, value: Path | None) -> Path | None:
        """Resolve optional override paths to absolute paths."""
        return value.expanduser().resolve() if value is not None else None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def reports_dir(self) -> Path:
        """Return the resolved reports directory."""
        return (self.reports_dir_override or (self.root_dir / "reports")).resolve()


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(extra="forbid")

    level: Annotated[str, Field(min_length=1)] = "INFO"
    json_logs: bool = False


class AppSettings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(
        env_prefix="MIG_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="forbid",
    )

    front: FrontSettings | None = None
    gmail: GmailSettings = Field(default_factory=GmailSettings)
    migration: MigrationSettings = Field(default_factory=MigrationSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    concurrency: ConcurrencySettings = Field(default_factory=ConcurrencySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(*, env_file: Path | None) -> AppSettings:
    """Load validated settings from environment and optional file.

    Args:
        env_file: Optional .env file path.

    Returns:
        Validated AppSettings instance.
    """
    if env_file is None:
        return AppSettings()
    return AppSettings(_env_file=env_file)  # type: ignore[call-arg]
