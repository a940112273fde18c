"""Ethquake — application configuration.

Loads .env variables into a typed config object.
Validates numeric variables on startup.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    strategies_dir: str
    db_path: str
    log_level: str
    host: str
    port: int
    basic_auth_user: Optional[str]
    basic_auth_password: Optional[str]
    futures_symbol_prefix: str
    candle_timeout_seconds: float
    candle_max_retries: int
    candle_retry_base_delay: float
    scheduler_timezone: str
    heartbeat_seconds: int
    telegram_bot_api_key: Optional[str]

    @property
    def auth_enabled(self) -> bool:
        """Return ``True`` when both basic-auth credentials are configured."""
        return bool(self.basic_auth_user and self.basic_auth_password)


def _int(name: str, default: str) -> int:
    raw = os.environ.get(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from exc


def _float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got '{raw}'") from exc


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` naming the offending variable when a numeric
    variable cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    max_retries = _int("CANDLE_MAX_RETRIES", "3")
    if max_retries < 1:
        raise ValueError("CANDLE_MAX_RETRIES must be at least 1")

    timeout = _float("CANDLE_TIMEOUT_SECONDS", "30")
    if timeout <= 0:
        raise ValueError("CANDLE_TIMEOUT_SECONDS must be positive")

    return Config(
        strategies_dir=os.environ.get("STRATEGIES_DIR", "strategies"),
        db_path=os.environ.get("DB_PATH", "data/ethquake.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=_int("PORT", "8080"),
        basic_auth_user=os.environ.get("BASIC_AUTH_USER") or None,
        basic_auth_password=os.environ.get("BASIC_AUTH_PASSWORD") or None,
        futures_symbol_prefix=os.environ.get("FUTURES_SYMBOL_PREFIX", "PF_"),
        candle_timeout_seconds=timeout,
        candle_max_retries=max_retries,
        candle_retry_base_delay=_float("CANDLE_RETRY_BASE_DELAY", "2.0"),
        scheduler_timezone=os.environ.get("SCHEDULER_TIMEZONE", "UTC"),
        heartbeat_seconds=_int("HEARTBEAT_SECONDS", "300"),
        telegram_bot_api_key=os.environ.get("TELEGRAM_BOT_API_KEY") or None,
    )
