from __future__ import annotations

from typing import Self

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.constants import DB_SCHEMA

# Load .env once at import so every BaseSettings subclass sees it
load_dotenv()


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings. Env vars prefixed with DATABASE_."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "tradeledger"
    schema_: str = Field(DB_SCHEMA, validation_alias="DATABASE_SCHEMA")
    pool_size: int = 5
    statement_timeout_ms: int = Field(5000, gt=0)

    @field_validator("schema_")
    @classmethod
    def _validate_schema(cls, v: str) -> str:
        if v != DB_SCHEMA:
            msg = f"DATABASE_SCHEMA must be '{DB_SCHEMA}' (got '{v}')."
            raise ValueError(msg)
        return v


class GatewaySettings(BaseSettings):
    """Webhook server settings. Env vars prefixed with GATEWAY_."""

    model_config = SettingsConfigDict(env_prefix="GATEWAY_")

    host: str = "0.0.0.0"
    port: int = 19790


class LockSettings(BaseSettings):
    """Per-conversation lock settings. Env vars prefixed with LOCK_."""

    model_config = SettingsConfigDict(env_prefix="LOCK_")

    acquire_timeout_s: float = Field(2.0, gt=0, le=30)
    # A durable claim older than this is considered abandoned by a crashed worker.
    stale_after_seconds: int = Field(300, gt=0, le=3600)


class PipelineSettings(BaseSettings):
    """Conversation pipeline settings. Env vars prefixed with PIPELINE_."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    confirm_fresh_commands: bool = False
    picker_page_size: int = Field(8, ge=1, le=25)
    write_timeout_s: float = Field(4.0, gt=0)
    category_timeout_s: float = Field(1.5, gt=0)
    extract_timeout_s: float = Field(8.0, gt=0)
    pending_max_age_hours: int = Field(72, gt=0)
    # Comma-separated "identity=tenant" pairs, e.g. "+14165550001=14165550000".
    tenant_map: str = ""

    @field_validator("tenant_map")
    @classmethod
    def _validate_tenant_map(cls, v: str) -> str:
        for part in v.split(","):
            part = part.strip()
            if part and ("=" not in part or not part.split("=", 1)[1].strip()):
                raise ValueError(
                    f"PIPELINE_TENANT_MAP entries must look like 'identity=tenant' (got '{part}')"
                )
        return v

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.category_timeout_s >= self.write_timeout_s:
            raise ValueError(
                f"category_timeout_s ({self.category_timeout_s}) must be less than "
                f"write_timeout_s ({self.write_timeout_s})"
            )
        return self


class OpenAISettings(BaseSettings):
    """OpenAI API settings. Env vars prefixed with OPENAI_."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = ""  # empty = rule-based extraction only, no category suggestions
    model: str = "gpt-4o-mini"
    base_url: str | None = None


class TelegramSettings(BaseSettings):
    """Telegram channel settings. Env vars prefixed with TELEGRAM_."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_")

    bot_token: str = ""  # empty = channel disabled
    allowed_user_ids: str = ""  # comma-separated Telegram user ID whitelist
    message_max_length: int = 4096


class LogSettings(BaseSettings):
    """Logging settings. Env vars prefixed with LOG_."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    json_output: bool = True
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v = v.upper()
        if v not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(allowed)} (got '{v}')")
        return v


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    lock: LockSettings = Field(default_factory=LockSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    log: LogSettings = Field(default_factory=LogSettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
