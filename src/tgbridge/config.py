"""
Runtime configuration, read from the environment (and an optional .env file).
"""

import os
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from tgbridge.version import __version__

TELEGRAM_API_URL = "https://api.telegram.org"


class ConfigError(Exception):
    def __init__(self, message: str, errors: Optional[list[dict]] = None):
        super().__init__(message)
        self.errors = errors or []


class TelegramSettings(BaseModel):
    base_url: str = TELEGRAM_API_URL
    timeout: float = 15.0
    max_retries: int = Field(default=2, ge=0)
    retry_base_delay: float = 0.3
    rate_limit_per_second: int = Field(default=25, ge=1)
    max_document_bytes: int = 15 * 1024 * 1024


class Settings(BaseModel):
    app_env: Literal["development", "test", "production"] = "development"
    host: str = "0.0.0.0"
    port: int = Field(default=8787, gt=0)
    telegram_bot_token: str = Field(min_length=1)
    allowed_chat_ids: frozenset[str] = frozenset()
    auth_bearer: Optional[str] = None
    log_level: Optional[str] = None
    allow_legacy_body: bool = True
    keepalive_interval: float = 25.0
    max_body_bytes: int = Field(default=2 * 1024 * 1024, gt=0)
    version: str = __version__
    telegram: TelegramSettings = TelegramSettings()

    @field_validator("allowed_chat_ids", mode="before")
    @classmethod
    def _split_chat_ids(cls, value):
        if isinstance(value, str):
            return frozenset(part.strip() for part in value.split(",") if part.strip())
        return value

    @field_validator("auth_bearer", "log_level", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "DEBUG" if self.app_env == "development" else "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        When no mapping is given the process environment is used, after
        loading a `.env` file if one exists.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        raw: dict = {"telegram_bot_token": environ.get("TELEGRAM_BOT_TOKEN", "")}
        optional = {
            "APP_ENV": "app_env",
            "HOST": "host",
            "PORT": "port",
            "ALLOWED_CHAT_IDS": "allowed_chat_ids",
            "AUTH_BEARER": "auth_bearer",
            "LOG_LEVEL": "log_level",
            "ALLOW_LEGACY_BODY": "allow_legacy_body",
            "KEEPALIVE_INTERVAL": "keepalive_interval",
            "MAX_BODY_BYTES": "max_body_bytes",
        }
        for env_name, field_name in optional.items():
            if environ.get(env_name) is not None:
                raw[field_name] = environ[env_name]

        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Environment validation error: {e.error_count()} problem(s)", e.errors()) from e
