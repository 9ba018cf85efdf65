"""
Grocery Manager — configuration

Settings come from environment variables, grouped per concern. Each group
is a pydantic model so tests can build one directly with explicit values.
"""

import os
from datetime import timedelta

from pydantic import BaseModel, Field

from .errors import ConcurrencyConflict


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./grocery.db"
    lock_timeout_ms: int = Field(default=5000, gt=0)
    echo: bool = False

    @classmethod
    def from_env(cls) -> "DatabaseSettings":
        return cls(
            url=os.environ.get("DATABASE_URL", cls.model_fields["url"].default),
            lock_timeout_ms=int(os.environ.get("DATABASE_LOCK_TIMEOUT_MS", 5000)),
            echo=_env_bool("DATABASE_ECHO", False),
        )


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    initial_interval_ms: int = Field(default=1000, ge=0)
    max_interval_ms: int = Field(default=5000, ge=0)
    multiplier: float = Field(default=1.5, ge=1.0)
    retryable: tuple[type[BaseException], ...] = (ConcurrencyConflict,)

    @classmethod
    def from_env(cls) -> "RetrySettings":
        return cls(
            max_attempts=int(os.environ.get("RETRY_MAX_ATTEMPTS", 3)),
            initial_interval_ms=int(os.environ.get("RETRY_INITIAL_INTERVAL_MS", 1000)),
            max_interval_ms=int(os.environ.get("RETRY_MAX_INTERVAL_MS", 5000)),
            multiplier=float(os.environ.get("RETRY_MULTIPLIER", 1.5)),
        )


class CacheSettings(BaseModel):
    backend: str = "local"
    redis_url: str = "redis://localhost:6379"
    ttl_seconds: int = Field(default=600, ge=0)
    max_size: int = Field(default=100, ge=1)

    @classmethod
    def from_env(cls) -> "CacheSettings":
        return cls(
            backend=os.environ.get("CACHE_BACKEND", "local").lower(),
            redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379"),
            ttl_seconds=int(os.environ.get("CACHE_TTL_SECONDS", 600)),
            max_size=int(os.environ.get("CACHE_MAX_SIZE", 100)),
        )


class ExpirationSettings(BaseModel):
    """
    order_ttl: lifetime of a PENDING order, used for expires_at.
    threshold / bottom_threshold: the sweeper looks at orders last touched
    between now - threshold and now - bottom_threshold.
    """

    order_ttl: timedelta = timedelta(minutes=30)
    threshold: timedelta = timedelta(days=1)
    bottom_threshold: timedelta = timedelta(minutes=35)
    batch_update_size: int = Field(default=100, ge=1)
    max_size: int = Field(default=1000, ge=1)
    interval_seconds: float = Field(default=60.0, gt=0)
    enabled: bool = True

    @classmethod
    def from_env(cls) -> "ExpirationSettings":
        return cls(
            order_ttl=timedelta(minutes=float(os.environ.get("ORDER_TTL_MINUTES", 30))),
            threshold=timedelta(minutes=float(os.environ.get("EXPIRE_THRESHOLD_MINUTES", 1440))),
            bottom_threshold=timedelta(
                minutes=float(os.environ.get("EXPIRE_BOTTOM_THRESHOLD_MINUTES", 35))
            ),
            batch_update_size=int(os.environ.get("EXPIRE_BATCH_UPDATE_SIZE", 100)),
            max_size=int(os.environ.get("EXPIRE_MAX_SIZE", 1000)),
            interval_seconds=float(os.environ.get("EXPIRE_INTERVAL_SECONDS", 60)),
            enabled=_env_bool("EXPIRE_ENABLED", True),
        )


class Settings(BaseModel):
    database: DatabaseSettings = DatabaseSettings()
    retry: RetrySettings = RetrySettings()
    cache: CacheSettings = CacheSettings()
    expiration: ExpirationSettings = ExpirationSettings()
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database=DatabaseSettings.from_env(),
            retry=RetrySettings.from_env(),
            cache=CacheSettings.from_env(),
            expiration=ExpirationSettings.from_env(),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
