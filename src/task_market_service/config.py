"""
Configuration management for the task market service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.

A small set of deployment values can be overridden from the environment
(secrets and pricing knobs); overrides are applied to the raw YAML before
validation so they go through the same model checks.
"""

from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEYS = frozenset({"secret_key", "webhook_secret", "session_secret", "cron_secret"})

# env var -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "PLATFORM_FEE_PERCENT": ("pricing", "platform_fee_percent"),
    "MIN_JOB_PRICE_USD": ("pricing", "min_job_price_usd"),
    "EMERGENCY_MIN_PRICE_USD": ("pricing", "emergency_min_price_usd"),
    "FRONTEND_URL": ("urls", "frontend_url"),
    "STRIPE_SECRET_KEY": ("payment_processor", "secret_key"),
    "STRIPE_WEBHOOK_SECRET": ("payment_processor", "webhook_secret"),
    "SESSION_SECRET": ("auth", "session_secret"),
    "INTERNAL_CRON_SECRET": ("internal", "cron_secret"),
}


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class PaymentProcessorConfig(BaseModel):
    """Payment processor connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    secret_key: str
    webhook_secret: str
    webhook_tolerance_seconds: int = Field(gt=0)
    timeout_seconds: int = Field(gt=0)
    currency: str


class PricingConfig(BaseModel):
    """Fee and minimum price policy."""

    model_config = ConfigDict(extra="forbid")
    platform_fee_percent: Decimal = Field(ge=0, le=100)
    min_job_price_usd: Decimal = Field(gt=0)
    emergency_min_price_usd: Decimal = Field(gt=0)


class AuthConfig(BaseModel):
    """Session token configuration."""

    model_config = ConfigDict(extra="forbid")
    session_secret: str = Field(min_length=16)
    token_ttl_seconds: int = Field(gt=0)


class OtpConfig(BaseModel):
    """One-time code configuration."""

    model_config = ConfigDict(extra="forbid")
    code_ttl_seconds: int = Field(gt=0)


class TasksConfig(BaseModel):
    """Task lifecycle limits and durations."""

    model_config = ConfigDict(extra="forbid")
    expiry_days: int = Field(gt=0)
    max_photos: int = Field(gt=0)
    max_title_length: int = Field(gt=0)
    chat_thread_ttl_days: int = Field(gt=0)
    price_prompt_after_hours: int = Field(gt=0)


class UrlsConfig(BaseModel):
    """Client-facing URLs used for processor redirects."""

    model_config = ConfigDict(extra="forbid")
    frontend_url: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class InternalConfig(BaseModel):
    """Shared secret for scheduler and operator endpoints."""

    model_config = ConfigDict(extra="forbid")
    cron_secret: str = Field(min_length=1)


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    payment_processor: PaymentProcessorConfig
    pricing: PricingConfig
    auth: AuthConfig
    otp: OtpConfig
    tasks: TasksConfig
    urls: UrlsConfig
    request: RequestConfig
    internal: InternalConfig


def get_config_path() -> Path:
    """Determine configuration file path."""
    config_path = os.environ.get("CONFIG_PATH")
    if config_path:
        return Path(config_path)
    return Path.cwd() / "config.yaml"


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for env_var, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value is None or value == "":
            continue
        section_data = raw.get(section)
        if not isinstance(section_data, dict):
            continue
        section_data[key] = value
    return raw


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and validate settings from the YAML config file.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the file does not contain a mapping.
        pydantic.ValidationError: If any required value is missing or invalid.
    """
    config_path = get_config_path()
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**_apply_env_overrides(raw))


def clear_settings_cache() -> None:
    """Drop cached settings so the next call reloads from disk."""
    get_settings.cache_clear()


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTION_MARKER if key in _SENSITIVE_KEYS else _redact(item)
            for key, item in value.items()
        }
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    return _redact(get_settings().model_dump(mode="json"))
