"""Environment-driven settings for the tracker.

Each concern reads its own prefixed variables; `get_settings` builds the
whole tree once per process.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string (sqlite+aiosqlite for local runs)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ProviderSettings(BaseSettings):
    """Upstream data provider settings."""

    model_config = SettingsConfigDict(env_prefix="PROVIDER_", extra="ignore")

    risk_api_url: str = Field(
        default="https://api.rugcheck.xyz",
        alias="PROVIDER_RISK_API_URL",
        description="Base URL for report, votes, insider graph and summary resources",
    )
    price_api_url: str = Field(
        default="https://data.fluxbeam.xyz",
        alias="PROVIDER_PRICE_API_URL",
        description="Base URL for the price resource",
    )
    timeout_seconds: float = Field(
        default=15.0,
        alias="PROVIDER_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Per-request timeout",
    )
    requests_per_second: float = Field(
        default=10.0,
        alias="PROVIDER_REQUESTS_PER_SECOND",
        gt=0.0,
        le=1000.0,
        description="Client-side rate limit across all provider resources",
    )

    @field_validator("risk_api_url", "price_api_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Provider URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class QueueSettings(BaseSettings):
    """Batch queue transport and redelivery settings."""

    model_config = SettingsConfigDict(env_prefix="QUEUE_", extra="ignore")

    transport: Literal["redis", "memory"] = Field(
        default="redis",
        alias="QUEUE_TRANSPORT",
        description="Queue transport backing batch delivery",
    )
    key_prefix: str = Field(
        default="token_metrics:batches",
        alias="QUEUE_KEY_PREFIX",
        description="Redis key prefix for pending/processing/delayed structures",
    )
    max_attempts: int = Field(
        default=3,
        alias="QUEUE_MAX_ATTEMPTS",
        ge=1,
        le=100,
        description="Delivery attempts per batch before it is dropped",
    )
    backoff_base_seconds: float = Field(
        default=5.0,
        alias="QUEUE_BACKOFF_BASE_SECONDS",
        ge=0.0,
        le=3600.0,
        description="First retry delay; doubles on every further attempt",
    )
    receive_timeout_seconds: float = Field(
        default=1.0,
        alias="QUEUE_RECEIVE_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="How long an idle worker blocks waiting for a batch",
    )
    lease_seconds: float = Field(
        default=900.0,
        alias="QUEUE_LEASE_SECONDS",
        ge=1.0,
        le=24 * 3600.0,
        description="How long a received batch belongs to its worker before it may be reclaimed",
    )


class WorkerSettings(BaseSettings):
    """Batch worker pool settings."""

    model_config = SettingsConfigDict(env_prefix="WORKER_", extra="ignore")

    batch_size: int = Field(
        default=10,
        alias="WORKER_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Mints per queued batch",
    )
    concurrency: int = Field(
        default=5,
        alias="WORKER_CONCURRENCY",
        ge=1,
        le=100,
        description="Batches processed concurrently",
    )
    budget_seconds: float = Field(
        default=25.0,
        alias="WORKER_BUDGET_SECONDS",
        gt=0.0,
        le=24 * 3600.0,
        description="Wall-clock budget for one processing cycle",
    )
    drain_timeout_seconds: float = Field(
        default=10.0,
        alias="WORKER_DRAIN_TIMEOUT_SECONDS",
        ge=0.0,
        le=3600.0,
        description="How long to wait for in-flight batches after the budget expires",
    )


class TrackingSettings(BaseSettings):
    """Which mints are tracked."""

    model_config = SettingsConfigDict(env_prefix="TRACKING_", extra="ignore")

    mints: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        alias="TRACKED_MINTS",
        description="Mints to monitor (comma-separated)",
    )
    include_alert_mints: bool = Field(
        default=True,
        alias="TRACKING_INCLUDE_ALERT_MINTS",
        description="Also monitor mints referenced by active, untriggered alerts",
    )
    max_tracked: int = Field(
        default=50,
        alias="TRACKING_MAX_TRACKED",
        ge=1,
        le=100_000,
        description="Upper bound on mints dispatched per cycle",
    )

    @field_validator("mints", mode="before")
    @classmethod
    def _parse_mints(cls, v: object) -> tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            return tuple(p.strip() for p in v.split(",") if p.strip())
        if isinstance(v, (list, tuple)):
            return tuple(str(x) for x in v)
        raise TypeError("Invalid TRACKED_MINTS type")


class SchedulerSettings(BaseSettings):
    """Scheduled trigger settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="SCHEDULER_ENABLED",
        description="Run dispatch + processing cycles on a timer",
    )
    interval_minutes: int = Field(
        default=5,
        alias="SCHEDULER_INTERVAL_MINUTES",
        ge=1,
        le=24 * 60,
        description="Minutes between cycles",
    )


class NotificationSettings(BaseSettings):
    """Triggered-alert notification settings."""

    model_config = SettingsConfigDict(env_prefix="NOTIFY_", extra="ignore")

    channel: Literal["log", "smtp", "webhook"] = Field(
        default="log",
        alias="NOTIFY_CHANNEL",
        description="Delivery channel for triggered alerts",
    )
    smtp_host: str | None = Field(default=None, alias="NOTIFY_SMTP_HOST")
    smtp_port: int = Field(default=587, alias="NOTIFY_SMTP_PORT", ge=1, le=65535)
    smtp_username: str | None = Field(default=None, alias="NOTIFY_SMTP_USERNAME")
    smtp_password: SecretStr | None = Field(default=None, alias="NOTIFY_SMTP_PASSWORD")
    smtp_starttls: bool = Field(default=True, alias="NOTIFY_SMTP_STARTTLS")
    sender: str = Field(
        default="alerts@localhost",
        alias="NOTIFY_SENDER",
        description="From address for email notifications",
    )
    webhook_url: SecretStr | None = Field(
        default=None,
        alias="NOTIFY_WEBHOOK_URL",
        description="Webhook receiving triggered alerts as JSON",
    )


class ApiSettings(BaseSettings):
    """HTTP surface settings."""

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")

    host: str = Field(default="127.0.0.1", alias="API_HOST")
    port: int = Field(default=8080, alias="API_PORT", ge=1, le=65535)
    summary_cache_ttl_seconds: float = Field(
        default=300.0,
        alias="API_SUMMARY_CACHE_TTL_SECONDS",
        ge=0.0,
        le=24 * 3600.0,
        description="How long report summaries are served from memory",
    )


def _from_env_file(settings_cls: type[BaseSettings]):
    # Nested settings only see `.env` when it is passed to them explicitly.
    return lambda: settings_cls(_env_file=_ENV_FILE, _env_file_encoding=_ENV_FILE_ENCODING)


def _mask_password(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    userinfo, at, host = rest.rpartition("@")
    if not sep or not at or ":" not in userinfo:
        return url
    return f"{scheme}://{userinfo.split(':', 1)[0]}:***@{host}"


class Settings(BaseSettings):
    """Top-level settings, one nested group per concern.

    Values come from the process environment first, then ``.env``.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    database: DatabaseSettings = Field(default_factory=_from_env_file(DatabaseSettings))
    redis: RedisSettings = Field(default_factory=_from_env_file(RedisSettings))
    provider: ProviderSettings = Field(default_factory=_from_env_file(ProviderSettings))
    queue: QueueSettings = Field(default_factory=_from_env_file(QueueSettings))
    worker: WorkerSettings = Field(default_factory=_from_env_file(WorkerSettings))
    tracking: TrackingSettings = Field(default_factory=_from_env_file(TrackingSettings))
    scheduler: SchedulerSettings = Field(default_factory=_from_env_file(SchedulerSettings))
    notify: NotificationSettings = Field(default_factory=_from_env_file(NotificationSettings))
    api: ApiSettings = Field(default_factory=_from_env_file(ApiSettings))

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log notifications instead of delivering them",
    )

    def get_logging_level(self) -> int:
        return logging.getLevelNamesMapping()[self.log_level]

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Startup summary safe to log: credentials masked, secrets reduced to set/not set."""
        return {
            "database_url": _mask_password(self.database.url),
            "redis_url": _mask_password(self.redis.url),
            "provider": {
                "risk_api_url": self.provider.risk_api_url,
                "price_api_url": self.provider.price_api_url,
                "requests_per_second": str(self.provider.requests_per_second),
            },
            "queue": {
                "transport": self.queue.transport,
                "max_attempts": str(self.queue.max_attempts),
                "backoff_base_seconds": str(self.queue.backoff_base_seconds),
            },
            "worker": {
                "batch_size": str(self.worker.batch_size),
                "concurrency": str(self.worker.concurrency),
                "budget_seconds": str(self.worker.budget_seconds),
            },
            "tracking": {
                "mints": str(len(self.tracking.mints)),
                "include_alert_mints": str(self.tracking.include_alert_mints),
                "max_tracked": str(self.tracking.max_tracked),
            },
            "notify": {
                "channel": self.notify.channel,
                "smtp_password": "(set)" if self.notify.smtp_password else "(not set)",
                "webhook_url": "(set)" if self.notify.webhook_url else "(not set)",
            },
            "scheduler_enabled": str(self.scheduler.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["serve", "cycle", "dispatch", "work", "init-db"]) -> None:
        """Refuse to run a command whose collaborators are not configured.

        Raises:
            ValueError: naming the missing or incompatible setting.
        """
        if command in ("dispatch", "work") and self.queue.transport == "memory":
            raise ValueError(
                "QUEUE_TRANSPORT=memory cannot carry batches between separate dispatch/work processes"
            )

        if self.dry_run:
            return
        if self.notify.channel == "smtp" and not self.notify.smtp_host:
            raise ValueError("NOTIFY_SMTP_HOST is required when NOTIFY_CHANNEL=smtp")
        if self.notify.channel == "webhook" and not self.notify.webhook_url:
            raise ValueError("NOTIFY_WEBHOOK_URL is required when NOTIFY_CHANNEL=webhook")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process.

    Raises:
        ValidationError: on missing or malformed environment values.
    """
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
