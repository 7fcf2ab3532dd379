# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for CohortSync.
Settings are loaded from environment variables with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.sync.lock_ttl_seconds
    600
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration for the mirrored CRM data and local linkage.

    The mirrored CRM tables live in their own schema (kept up to date by an
    external replication process) next to the local application tables.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        mirror_schema: Schema holding the read-only mirrored CRM tables.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
    """

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore",
    )

    user: str = "cohortsync"
    password: SecretStr = SecretStr("cohortsync_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "cohortsync"
    mirror_schema: str = "salesforce"
    pool_size: int = 5
    max_overflow: int = 10

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for the lock store, sync state and message broker.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr = SecretStr("")
    database: int = 0
    max_connections: int = 20

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        pwd = self.password.get_secret_value()
        auth = f":{pwd}@" if pwd else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.database}"


class SyncSettings(BaseSettings):
    """Program synchronization configuration.

    The lock TTL is the only timeout mechanism of a run: once it elapses
    another worker may start syncing the same program. It must exceed the
    longest expected run, and the recurring interval must not exceed it.

    Attributes:
        enabled: Whether the recurring sync is scheduled at all.
        interval_seconds: Seconds between recurring sync triggers.
        lock_ttl_seconds: Time-to-live of a per-program sync lock.
        dispatch_lock_ttl_seconds: Time-to-live of the fleet-wide lock held
            while the recurring trigger enqueues per-program runs.
        lock_prefix: Prefix of every lock key.
        lock_backend: Lock and sync-state storage backend.
        conflict_policy: What to do when a lock is already held.
        refresh_lock: Whether long runs extend their lock once half the TTL
            has elapsed.
        state_ttl_days: Days a participant sync fingerprint is kept.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore",
    )

    enabled: bool = True
    interval_seconds: int = 300
    lock_ttl_seconds: int = 600
    dispatch_lock_ttl_seconds: int = 120
    lock_prefix: str = "sync"
    lock_backend: Literal["redis", "memory"] = "redis"
    conflict_policy: Literal["log", "record"] = "record"
    refresh_lock: bool = True
    state_ttl_days: int = 30

    @model_validator(mode="after")
    def validate_interval(self) -> Self:
        """Validate that two recurring runs cannot overlap for one program.

        Raises:
            ValueError: If the interval exceeds the lock TTL.
        """
        if self.interval_seconds > self.lock_ttl_seconds:
            raise ValueError(
                f"SYNC_INTERVAL_SECONDS ({self.interval_seconds}) is greater than "
                f"SYNC_LOCK_TTL_SECONDS ({self.lock_ttl_seconds}). Increase the lock "
                "TTL to be longer than the sync interval."
            )
        return self


class CanvasSettings(BaseSettings):
    """Canvas LMS API configuration.

    Attributes:
        base_url: Canvas instance URL.
        api_token: Canvas API access token.
        account_id: Canvas account new users are created in.
        timeout: Request timeout in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="CANVAS_",
        extra="ignore",
    )

    base_url: str = "https://canvas.example.com"
    api_token: SecretStr = SecretStr("")
    account_id: str = "1"
    timeout: float = 30.0


class ZoomSettings(BaseSettings):
    """Zoom API configuration (server-to-server OAuth).

    Attributes:
        base_url: Zoom REST API base URL.
        oauth_url: Zoom OAuth token endpoint.
        account_id: Zoom account ID.
        client_id: OAuth client ID.
        client_secret: OAuth client secret.
        timeout: Request timeout in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="ZOOM_",
        extra="ignore",
    )

    base_url: str = "https://api.zoom.us/v2"
    oauth_url: str = "https://zoom.us/oauth/token"
    account_id: str = ""
    client_id: str = ""
    client_secret: SecretStr = SecretStr("")
    timeout: float = 30.0


class DiscordSettings(BaseSettings):
    """Discord bot API configuration.

    Attributes:
        base_url: Discord REST API base URL.
        bot_token: Bot token used to manage guild member roles.
        timeout: Request timeout in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="DISCORD_",
        extra="ignore",
    )

    base_url: str = "https://discord.com/api/v10"
    bot_token: SecretStr = SecretStr("")
    timeout: float = 30.0


class SMTPSettings(BaseSettings):
    """SMTP configuration for sync report emails.

    Attributes:
        host: SMTP server hostname. Email is disabled when empty.
        port: SMTP server port.
        username: SMTP authentication username.
        password: SMTP authentication password.
        use_tls: Use STARTTLS.
        from_email: Sender email address.
        from_name: Sender display name.
    """

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore",
    )

    host: str = ""
    port: int = 587
    username: str = ""
    password: SecretStr = SecretStr("")
    use_tls: bool = True
    from_email: str = ""
    from_name: str = "CohortSync"

    @property
    def is_configured(self) -> bool:
        """Check if enough is configured to send email."""
        return bool(self.host and self.from_email)


class WorkerSettings(BaseSettings):
    """Background worker configuration.

    Attributes:
        processes: Number of worker processes.
        threads: Number of threads per process.
        metrics_enabled: Expose Prometheus metrics over HTTP.
        metrics_addr: Address the metrics endpoints bind.
        metrics_port: First metrics port of the worker processes. Each
            process takes the first free port of the next `processes` ports.
        scheduler_metrics_port: Metrics port of the scheduler process.
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        extra="ignore",
    )

    processes: int = 2
    threads: int = 4
    metrics_enabled: bool = True
    metrics_addr: str = "0.0.0.0"
    metrics_port: int = 9191
    scheduler_metrics_port: int = 9190


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Database settings.
        redis: Redis settings.
        sync: Program synchronization settings.
        canvas: Canvas API settings.
        zoom: Zoom API settings.
        discord: Discord API settings.
        smtp: SMTP settings.
        worker: Background worker settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    canvas: CanvasSettings = Field(default_factory=CanvasSettings)
    zoom: ZoomSettings = Field(default_factory=ZoomSettings)
    discord: DiscordSettings = Field(default_factory=DiscordSettings)
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with an in-process lock store.
        """
        if self.environment == "production" and self.sync.lock_backend == "memory":
            raise ValueError(
                "The in-memory lock store cannot coordinate multiple workers. "
                "Set SYNC_LOCK_BACKEND=redis in production."
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
