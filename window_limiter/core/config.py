"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Rate limit variables keep their historical, unprefixed names
(MAX_REQUESTS_PER_IP, TIME_PER_TOKEN, ...) so existing deployments keep working.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from window_limiter.services.rate_decision import RateLimitPolicy


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment."""

    return RateLimitSettings()


def _build_redis_settings() -> "RedisSettings":
    """Build Redis connection settings from environment."""

    return RedisSettings()


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment."""

    return AppSettings()


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()


class RateLimitSettings(BaseSettings):
    """Limits, key namespaces and identity headers for the limiter."""

    max_requests_per_ip: int = Field(
        2,
        description="Maximum requests per window for callers identified by IP",
        ge=1,
    )
    time_per_ip: int = Field(
        1,
        description="Window length in seconds for IP-identified callers",
        ge=1,
    )
    max_requests_per_token: int = Field(
        3,
        description="Maximum requests per window for callers identified by API token",
        ge=1,
    )
    time_per_token: int = Field(
        1,
        description="Window length in seconds for token-identified callers",
        ge=1,
    )
    ip_key_prefix: str = Field(
        "/rl/ip/",
        description="Counter key namespace for IP identities",
        min_length=1,
    )
    token_key_prefix: str = Field(
        "/rl/token/",
        description="Counter key namespace for token identities",
        min_length=1,
    )
    rate_limit_token_header: str = Field(
        "api_key",
        description="Request header carrying the caller's API token",
    )
    rate_limit_forwarded_header: str = Field(
        "X-Forwarded-For",
        description="Forwarding header whose first element is the caller IP",
    )

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    def token_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(
            max_requests=self.max_requests_per_token,
            window_seconds=self.time_per_token,
        )

    def ip_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(
            max_requests=self.max_requests_per_ip,
            window_seconds=self.time_per_ip,
        )


class RedisSettings(BaseSettings):
    """Connection parameters for the Redis counter store."""

    address: str = Field(
        "localhost:6379",
        description="Redis address as host:port",
    )
    password: str = Field(
        "",
        description="Redis password (empty for none)",
    )
    db: int = Field(
        0,
        description="Redis logical database index",
        ge=0,
    )
    socket_timeout_seconds: float = Field(
        1.0,
        description="Socket connect/read timeout in seconds",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    store_backend: Literal["redis", "memory"] = Field(
        "redis",
        description="Counter store implementation: shared Redis or per-process memory",
    )
    store_timeout_seconds: float = Field(
        0.5,
        description="Deadline for a single counter bump before it counts as a store failure",
        gt=0,
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Enable the rate limiting middleware",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers on counted responses",
    )
    rate_limit_exempt_paths: str = Field(
        "/health",
        description="Comma-separated request paths that bypass rate limiting",
    )
    trust_client_address: bool = Field(
        False,
        description="Fall back to the socket peer address when no forwarding header is sent",
    )
    memory_sweep_interval_seconds: float = Field(
        30.0,
        description="Interval of the expired-counter sweep for the in-memory store",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )

    def exempt_paths(self) -> frozenset[str]:
        """Parse the comma-separated exempt path list.

        Examples:
            >>> AppSettings(rate_limit_exempt_paths="/health, /metrics").exempt_paths()
            frozenset({'/health', '/metrics'})
        """
        return frozenset(
            path.strip() for path in self.rate_limit_exempt_paths.split(",") if path.strip()
        )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field(
        "INFO",
        description="Root log level",
    )
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Log destination",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output=file (default logs/app.log)",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
