# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Settings are resolved once per process by get_settings() and handed
# to the engine operations explicitly.

import json
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./affiliates.db or a Postgres URL.
    DATABASE_URL: str = "sqlite:///./affiliates.db"

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Every store call is bounded. Statement/lock wait in seconds, and how
    # long to wait for a pooled connection.
    STORE_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    STORE_POOL_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    # Tier calculation: trailing window of earned orders and the rate used
    # when no active tier matches.
    TIER_WINDOW_DAYS: int = Field(default=90, gt=0)
    DEFAULT_COMMISSION_RATE: Decimal = Field(default=Decimal("3"), ge=0, le=100)

    # Referral codes look like AFFY-1A2B3C4D-9XK2QZ.
    REFERRAL_CODE_PREFIX: str = "AFFY"
    REFERRAL_CODE_MAX_ATTEMPTS: int = Field(default=5, gt=0)

    # Payout requests retry when another payout for the same affiliate
    # was accepted between the balance read and the insert.
    PAYOUT_MAX_ATTEMPTS: int = Field(default=3, gt=0)

    # Paginated history endpoints.
    HISTORY_DEFAULT_LIMIT: int = Field(default=20, gt=0)
    HISTORY_MAX_LIMIT: int = Field(default=100, gt=0)

    # Outbound notifications. "log" only records the message, "webhook"
    # relays it as signed JSON to an email delivery service.
    MAILER_BACKEND: str = "log"
    MAILER_WEBHOOK_URL: Optional[str] = None
    MAILER_WEBHOOK_SECRET: Optional[str] = None
    MAILER_TIMEOUT_SECONDS: float = 10.0

    # Where new affiliate applications are announced.
    AFFILIATE_ADMIN_EMAIL: Optional[str] = None

    # Observability
    LOG_LEVEL: str = "INFO"

    @field_validator("REFERRAL_CODE_PREFIX", mode="before")
    @classmethod
    def _normalize_prefix(cls, value):
        if isinstance(value, str):
            return value.strip().upper() or "AFFY"
        return value

    @field_validator("MAILER_BACKEND", mode="before")
    @classmethod
    def _normalize_backend(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
