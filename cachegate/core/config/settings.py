#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
caching, admission-control and session layer. All tunables (connection URL,
TTLs, rate limits, logging) live here so every component reads the same values.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Nested read-only views (settings.redis, settings.cache, ...) per concern
- Components accept an explicit Settings instance, so tests never need the singleton
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """
    Backing-store connection configuration.

    STAGE-0.1: Redis connection configuration

    Reconnection uses capped incremental backoff:
        delay(attempt) = min(attempt * REDIS_RECONNECT_STEP, REDIS_RECONNECT_MAX_DELAY)
    and gives up for good after REDIS_RECONNECT_MAX_ATTEMPTS.
    """

    REDIS_URL: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    REDIS_CONNECT_TIMEOUT: float = Field(default=10.0, description="Connect timeout in seconds")
    REDIS_SOCKET_TIMEOUT: float = Field(default=5.0, description="Per-command socket timeout in seconds")
    REDIS_RECONNECT_MAX_ATTEMPTS: int = Field(default=10, description="Reconnect attempts before disabling")
    REDIS_RECONNECT_STEP: float = Field(default=0.1, description="Backoff increment per attempt (seconds)")
    REDIS_RECONNECT_MAX_DELAY: float = Field(default=3.0, description="Backoff ceiling (seconds)")
    REDIS_RECONNECT_ON_STARTUP_FAILURE: bool = Field(
        default=True, description="Start the reconnect loop when the initial connect fails"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    TTL configuration for cached data.

    STAGE-2: Cache TTL configuration

    Different TTLs for different tiers: lists churn quickly, single items rarely.
    """

    CACHE_DEFAULT_TTL: int = Field(default=3600, description="Default TTL for plain set/hash writes")
    CACHE_RESPONSE_TTL: int = Field(default=300, description="Response cache TTL (5 minutes)")
    HISTORY_LIST_TTL: int = Field(default=60, description="History list page TTL")
    HISTORY_ITEM_TTL: int = Field(default=300, description="History single item TTL")
    HISTORY_STATS_TTL: int = Field(default=120, description="History aggregate stats TTL")
    HISTORY_COUNT_TTL: int = Field(default=120, description="History count TTL")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class SessionSettings(BaseSettings):
    """Session and one-time token lifetimes."""

    SESSION_TTL: int = Field(default=7 * 24 * 60 * 60, description="Session TTL (7 days)")
    TEMP_DATA_TTL: int = Field(default=3600, description="One-time token TTL (1 hour)")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Rate limiting configuration.

    STAGE-3: Rate limiting thresholds

    Fixed-window counters per identity+route. Three presets:
    - general API traffic
    - strict (login, register, password reset)
    - uploads
    """

    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60, description="General API window")
    RATE_LIMIT_MAX: int = Field(default=60, description="General API requests per window")
    RATE_LIMIT_STRICT_WINDOW_SECONDS: int = Field(default=15 * 60, description="Strict window")
    RATE_LIMIT_STRICT_MAX: int = Field(default=5, description="Strict requests per window")
    RATE_LIMIT_UPLOAD_WINDOW_SECONDS: int = Field(default=60, description="Upload window")
    RATE_LIMIT_UPLOAD_MAX: int = Field(default=10, description="Uploads per window")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="CacheGate", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="/api", description="Prefix for all API routes")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from cachegate.core.config.settings import get_settings

        settings = get_settings()
        url = settings.redis.REDIS_URL
        ttl = settings.cache.CACHE_RESPONSE_TTL
    """

    # Redis settings
    REDIS_URL: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    REDIS_CONNECT_TIMEOUT: float = Field(default=10.0, description="Connect timeout in seconds")
    REDIS_SOCKET_TIMEOUT: float = Field(default=5.0, description="Per-command socket timeout in seconds")
    REDIS_RECONNECT_MAX_ATTEMPTS: int = Field(default=10, description="Reconnect attempts before disabling")
    REDIS_RECONNECT_STEP: float = Field(default=0.1, description="Backoff increment per attempt (seconds)")
    REDIS_RECONNECT_MAX_DELAY: float = Field(default=3.0, description="Backoff ceiling (seconds)")
    REDIS_RECONNECT_ON_STARTUP_FAILURE: bool = Field(
        default=True, description="Start the reconnect loop when the initial connect fails"
    )

    # Cache settings
    CACHE_DEFAULT_TTL: int = Field(default=3600, description="Default TTL for plain set/hash writes")
    CACHE_RESPONSE_TTL: int = Field(default=300, description="Response cache TTL (5 minutes)")
    HISTORY_LIST_TTL: int = Field(default=60, description="History list page TTL")
    HISTORY_ITEM_TTL: int = Field(default=300, description="History single item TTL")
    HISTORY_STATS_TTL: int = Field(default=120, description="History aggregate stats TTL")
    HISTORY_COUNT_TTL: int = Field(default=120, description="History count TTL")

    # Session settings
    SESSION_TTL: int = Field(default=7 * 24 * 60 * 60, description="Session TTL (7 days)")
    TEMP_DATA_TTL: int = Field(default=3600, description="One-time token TTL (1 hour)")

    # Rate limiting settings
    RATE_LIMIT_WINDOW_SECONDS: int = Field(default=60, description="General API window")
    RATE_LIMIT_MAX: int = Field(default=60, description="General API requests per window")
    RATE_LIMIT_STRICT_WINDOW_SECONDS: int = Field(default=15 * 60, description="Strict window")
    RATE_LIMIT_STRICT_MAX: int = Field(default=5, description="Strict requests per window")
    RATE_LIMIT_UPLOAD_WINDOW_SECONDS: int = Field(default=60, description="Upload window")
    RATE_LIMIT_UPLOAD_MAX: int = Field(default=10, description="Uploads per window")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="CacheGate", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8000, description="API port")
    API_BASE_PATH: str = Field(default="/api", description="Prefix for all API routes")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    # Nested configuration views
    @property
    def redis(self) -> RedisSettings:
        """Get Redis settings."""
        return RedisSettings(
            REDIS_URL=self.REDIS_URL,
            REDIS_CONNECT_TIMEOUT=self.REDIS_CONNECT_TIMEOUT,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_RECONNECT_MAX_ATTEMPTS=self.REDIS_RECONNECT_MAX_ATTEMPTS,
            REDIS_RECONNECT_STEP=self.REDIS_RECONNECT_STEP,
            REDIS_RECONNECT_MAX_DELAY=self.REDIS_RECONNECT_MAX_DELAY,
            REDIS_RECONNECT_ON_STARTUP_FAILURE=self.REDIS_RECONNECT_ON_STARTUP_FAILURE,
        )

    @property
    def cache(self) -> CacheSettings:
        """Get cache TTL settings."""
        return CacheSettings(
            CACHE_DEFAULT_TTL=self.CACHE_DEFAULT_TTL,
            CACHE_RESPONSE_TTL=self.CACHE_RESPONSE_TTL,
            HISTORY_LIST_TTL=self.HISTORY_LIST_TTL,
            HISTORY_ITEM_TTL=self.HISTORY_ITEM_TTL,
            HISTORY_STATS_TTL=self.HISTORY_STATS_TTL,
            HISTORY_COUNT_TTL=self.HISTORY_COUNT_TTL,
        )

    @property
    def session(self) -> SessionSettings:
        """Get session settings."""
        return SessionSettings(
            SESSION_TTL=self.SESSION_TTL,
            TEMP_DATA_TTL=self.TEMP_DATA_TTL,
        )

    @property
    def rate_limit(self) -> RateLimitSettings:
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_WINDOW_SECONDS=self.RATE_LIMIT_WINDOW_SECONDS,
            RATE_LIMIT_MAX=self.RATE_LIMIT_MAX,
            RATE_LIMIT_STRICT_WINDOW_SECONDS=self.RATE_LIMIT_STRICT_WINDOW_SECONDS,
            RATE_LIMIT_STRICT_MAX=self.RATE_LIMIT_STRICT_MAX,
            RATE_LIMIT_UPLOAD_WINDOW_SECONDS=self.RATE_LIMIT_UPLOAD_WINDOW_SECONDS,
            RATE_LIMIT_UPLOAD_MAX=self.RATE_LIMIT_UPLOAD_MAX,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(
            LOG_LEVEL=self.LOG_LEVEL,
            LOG_FORMAT=self.LOG_FORMAT,
        )

    @property
    def app(self) -> ApplicationSettings:
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
            API_HOST=self.API_HOST,
            API_PORT=self.API_PORT,
            API_BASE_PATH=self.API_BASE_PATH,
            CORS_ORIGINS=self.CORS_ORIGINS,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
