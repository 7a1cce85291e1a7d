"""
Centralized configuration with environment variable overrides.

Store timeouts, retry behaviour, and event publication switches are
configurable here. Nothing is hardcoded in the scheduling logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from slotwise.logging_context import RequestIdFilter

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DatabaseConfig:
    """Backing store connection settings."""

    url: str = os.getenv("DATABASE_URL", "sqlite:///./slotwise.db")
    store_timeout_sec: float = _safe_float("STORE_TIMEOUT_SEC", "5.0")
    echo: bool = _safe_bool("DB_ECHO", "false")


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot generation and read-path behaviour."""

    # 0 means "step by the service duration"
    default_granularity_minutes: int = _safe_int("DEFAULT_GRANULARITY_MINUTES", "0")
    read_retry_attempts: int = _safe_int("READ_RETRY_ATTEMPTS", "3")
    read_retry_backoff_sec: float = _safe_float("READ_RETRY_BACKOFF_SEC", "0.05")
    max_calendar_days: int = _safe_int("MAX_CALENDAR_DAYS", "62")


@dataclass(frozen=True)
class EventConfig:
    """Outbound domain event switches."""

    publish_events: bool = _safe_bool("PUBLISH_EVENTS", "true")
    publish_slot_reserved: bool = _safe_bool("PUBLISH_SLOT_RESERVED", "true")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    events: EventConfig = field(default_factory=EventConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    service_name: str = os.getenv("SERVICE_NAME", "slotwise-scheduling")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if not config.database.url:
        raise ValueError("DATABASE_URL must not be empty")
    if config.database.store_timeout_sec <= 0:
        raise ValueError(
            f"STORE_TIMEOUT_SEC must be > 0, got {config.database.store_timeout_sec}"
        )
    if config.scheduling.default_granularity_minutes < 0:
        raise ValueError(
            "DEFAULT_GRANULARITY_MINUTES must be >= 0, "
            f"got {config.scheduling.default_granularity_minutes}"
        )
    if config.scheduling.read_retry_attempts < 1:
        raise ValueError(
            f"READ_RETRY_ATTEMPTS must be >= 1, got {config.scheduling.read_retry_attempts}"
        )
    if config.scheduling.read_retry_backoff_sec < 0:
        raise ValueError(
            "READ_RETRY_BACKOFF_SEC must be >= 0, "
            f"got {config.scheduling.read_retry_backoff_sec}"
        )
    if config.scheduling.max_calendar_days < 1:
        raise ValueError(
            f"MAX_CALENDAR_DAYS must be >= 1, got {config.scheduling.max_calendar_days}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] [%(request_id)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())
    logger.info("Configuration loaded for '%s'", config.service_name)
    return config


# Singleton instance
settings = load_config()
