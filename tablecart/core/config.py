"""Environment-driven configuration objects for the cart service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from tablecart.core import constants
from tablecart.core.exceptions import ConfigurationException


def _str_to_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"true", "1", "yes", "y"}


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationException(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationException(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(slots=True)
class SessionPolicy:
    """Session lifecycle knobs: idle eviction and explicit close."""

    idle_timeout: int = constants.SESSION_IDLE_TIMEOUT_SECONDS  # 0 disables eviction
    cleanup_interval: int = constants.SESSION_CLEANUP_INTERVAL_SECONDS
    closed_history: int = constants.CLOSED_SESSION_HISTORY
    allow_client_close: bool = False


@dataclass(slots=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    catalog_path: str | None = None
    max_line_quantity: int = constants.MAX_LINE_QUANTITY
    channel_queue_size: int = constants.CHANNEL_QUEUE_SIZE
    ws_heartbeat: int = constants.WS_HEARTBEAT_SECONDS
    sessions: SessionPolicy = field(default_factory=SessionPolicy)


def load_settings(env_file: str | None = None) -> Settings:
    """Load environment variables once and expose typed settings."""
    load_dotenv(env_file)

    sessions = SessionPolicy(
        idle_timeout=_int_env(
            "SESSION_IDLE_TIMEOUT_SECONDS", constants.SESSION_IDLE_TIMEOUT_SECONDS
        ),
        cleanup_interval=_int_env(
            "SESSION_CLEANUP_INTERVAL_SECONDS", constants.SESSION_CLEANUP_INTERVAL_SECONDS, 1
        ),
        closed_history=_int_env("CLOSED_SESSION_HISTORY", constants.CLOSED_SESSION_HISTORY),
        allow_client_close=_str_to_bool(os.getenv("ALLOW_CLIENT_CLOSE", "false")),
    )

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_int_env("PORT", 8080, 1),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        catalog_path=os.getenv("CATALOG_PATH") or None,
        max_line_quantity=_int_env("MAX_LINE_QUANTITY", constants.MAX_LINE_QUANTITY, 1),
        channel_queue_size=_int_env("CHANNEL_QUEUE_SIZE", constants.CHANNEL_QUEUE_SIZE, 1),
        ws_heartbeat=_int_env("WS_HEARTBEAT_SECONDS", constants.WS_HEARTBEAT_SECONDS, 1),
        sessions=sessions,
    )
