# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Per-site detector options (enabled flags, thresholds, API keys) live
# in the settings table instead, see zerospam.crud.settings.

import json
from typing import List, Optional

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

    # Core DB connection string, like sqlite:///./zerospam.db or Postgres URL.
    DATABASE_URL: str = "sqlite:///./zerospam.db"

    # Secret key used to sign form nonces. Must be kept private in production.
    SECRET_KEY: str

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Nonce lifetime for the manual block form. Nonces stay valid for the
    # current and the previous half-lifetime tick.
    NONCE_LIFETIME_SECONDS: int = Field(default=86400, gt=1)
    NONCE_ACTION: str = "zerospam"

    # Remote lookup cache: "memory", "redis" or "none".
    CACHE_BACKEND: str = "memory"
    REDIS_URL: Optional[str] = None
    CACHE_NAMESPACE: str = "zerospam"
    CACHE_DEFAULT_TTL_SECONDS: int = 86400
    # Memory backend only. Expired entries are swept once the store is full,
    # then the oldest entries are evicted.
    CACHE_MAX_ENTRIES: int = Field(default=10000, gt=0)

    # Outbound detector calls never run with a timeout below this floor.
    DETECTOR_TIMEOUT_FLOOR_SECONDS: float = Field(default=1.0, gt=0)
    DETECTOR_DEFAULT_TIMEOUT_SECONDS: float = 5.0
    # Extra time the aggregator waits past the slowest detector timeout.
    DETECTOR_GRACE_SECONDS: float = 1.0
    DETECTOR_MAX_WORKERS: int = Field(default=8, gt=0)

    # Upstream endpoints. Overridable for staging mirrors and tests.
    STOP_FORUM_SPAM_ENDPOINT: str = "https://api.stopforumspam.org/api"
    IPSTACK_ENDPOINT: str = "http://api.ipstack.com"
    IPINFO_ENDPOINT: str = "https://ipinfo.io"

    # Proxy/client IP extraction settings
    TRUST_PROXY_HEADERS: bool = False
    TRUSTED_PROXY_IPS: List[str] = Field(default_factory=list)
    TRUSTED_IP_HEADERS: List[str] = Field(
        default_factory=lambda: [
            "CF-Connecting-IP",
            "X-Forwarded-For",
            "X-Real-IP",
        ]
    )

    # Event log writes happen on a background worker unless disabled.
    EVENT_LOG_ASYNC: bool = True
    # Queued writes past this limit are dropped and counted as failures.
    EVENT_LOG_MAX_PENDING: int = Field(default=1000, gt=0)

    @field_validator("TRUSTED_PROXY_IPS", "TRUSTED_IP_HEADERS", mode="before")
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return parts
        return value


# Instantiate a single settings object for app-wide import.
# Any module can just `from zerospam.core.config import settings`.
settings = Settings()
