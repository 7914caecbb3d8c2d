"""Pipeline configuration loaded from the environment and `.env`.

Each collaborator (database, Redis cache, Stacks node API, enrichment
worker, trigger) has its own settings group; `Settings` gathers them.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from stacks_lakehouse.errors import ConfigurationError

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string (SQLite accepted for local runs)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (optional lookup cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; caching is disabled when unset",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class StacksApiSettings(BaseSettings):
    """Stacks node / Hiro API settings."""

    model_config = SettingsConfigDict(env_prefix="STACKS_API_", extra="ignore")

    base_url: str = Field(
        default="https://api.hiro.so",
        alias="STACKS_API_BASE_URL",
        description="Base URL of the Stacks API",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="STACKS_API_KEY",
        description="Optional API key sent as x-hiro-api-key",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="STACKS_API_REQUEST_TIMEOUT_SECONDS",
        gt=0,
    )
    max_requests_per_second: float = Field(
        default=5.0,
        alias="STACKS_API_MAX_REQUESTS_PER_SECOND",
        gt=0,
    )

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate API URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("STACKS_API_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class EnrichmentSettings(BaseSettings):
    """Metadata enrichment worker settings."""

    model_config = SettingsConfigDict(env_prefix="ENRICHMENT_", extra="ignore")

    token_batch_limit: int = Field(default=50, alias="ENRICHMENT_TOKEN_BATCH_LIMIT", ge=1)
    token_batch_size: int = Field(default=5, alias="ENRICHMENT_TOKEN_BATCH_SIZE", ge=1)
    batch_delay_seconds: float = Field(default=2.0, alias="ENRICHMENT_BATCH_DELAY_SECONDS", ge=0)
    entity_timeout_seconds: float = Field(default=15.0, alias="ENRICHMENT_ENTITY_TIMEOUT_SECONDS", gt=0)
    call_timeout_seconds: float = Field(default=8.0, alias="ENRICHMENT_CALL_TIMEOUT_SECONDS", gt=0)
    uri_timeout_seconds: float = Field(default=5.0, alias="ENRICHMENT_URI_TIMEOUT_SECONDS", gt=0)
    contract_batch_limit: int = Field(default=1000, alias="ENRICHMENT_CONTRACT_BATCH_LIMIT", ge=1)
    contract_concurrency: int = Field(default=10, alias="ENRICHMENT_CONTRACT_CONCURRENCY", ge=1)
    ipfs_gateway: str = Field(
        default="https://ipfs.io/ipfs/",
        alias="ENRICHMENT_IPFS_GATEWAY",
        description="HTTP gateway prefix used to rewrite ipfs:// URIs",
    )

    @field_validator("ipfs_gateway")
    @classmethod
    def validate_gateway(cls, v: str) -> str:
        """Ensure the gateway is an HTTP(S) prefix ending with a slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("ENRICHMENT_IPFS_GATEWAY must be an HTTP(S) URL")
        return v if v.endswith("/") else f"{v}/"


class PipelineSettings(BaseSettings):
    """Pipeline orchestrator and trigger settings."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="PIPELINE_API_KEY",
        description="Secret that authorizes pipeline triggers",
    )
    step_timeout_seconds: float = Field(
        default=300.0,
        alias="PIPELINE_STEP_TIMEOUT_SECONDS",
        description="Timeout for heavy staging/mart steps",
        gt=0,
    )
    catalog_step_timeout_seconds: float = Field(
        default=120.0,
        alias="PIPELINE_CATALOG_STEP_TIMEOUT_SECONDS",
        description="Timeout for discovery/classification steps",
        gt=0,
    )
    discovery_window_minutes: int = Field(
        default=5,
        alias="PIPELINE_DISCOVERY_WINDOW_MINUTES",
        description="Trailing window used to report newly discovered rows",
        ge=1,
    )
    feature_window_days: int = Field(
        default=30,
        alias="PIPELINE_FEATURE_WINDOW_DAYS",
        description="Trailing window for classification usage features",
        ge=1,
    )


class Settings(BaseSettings):
    """Root settings aggregating all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
        case_sensitive=False,
    )

    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    stacks_api: StacksApiSettings = Field(
        default_factory=lambda: StacksApiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    enrichment: EnrichmentSettings = Field(
        default_factory=lambda: EnrichmentSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pipeline: PipelineSettings = Field(
        default_factory=lambda: PipelineSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "stacks_api": {
                "base_url": self.stacks_api.base_url,
                "api_key": "(set)" if self.stacks_api.api_key else "(not set)",
                "max_requests_per_second": str(self.stacks_api.max_requests_per_second),
            },
            "enrichment": {
                "token_batch_limit": str(self.enrichment.token_batch_limit),
                "token_batch_size": str(self.enrichment.token_batch_size),
                "batch_delay_seconds": str(self.enrichment.batch_delay_seconds),
                "ipfs_gateway": self.enrichment.ipfs_gateway,
            },
            "pipeline": {
                "api_key": "(set)" if self.pipeline.api_key else "(not set)",
                "step_timeout_seconds": str(self.pipeline.step_timeout_seconds),
            },
            "log_level": self.log_level,
        }

    def validate_requirements(self, *, command: str) -> None:
        """Validate command-specific requirements.

        Raises:
            ConfigurationError: If the command needs configuration that is not set.
        """
        if command == "trigger":
            if self.pipeline.api_key is None or not self.pipeline.api_key.get_secret_value():
                raise ConfigurationError("PIPELINE_API_KEY is required to authorize pipeline triggers")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Mask the password of a connection URL."""
        try:
            return make_url(url).render_as_string(hide_password=True)
        except ArgumentError:
            return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process.

    Raises:
        ValidationError: If DATABASE_URL is missing or a value is invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Forget the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
