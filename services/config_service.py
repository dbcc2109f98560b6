from __future__ import annotations

from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from data.store import BaseStore


class BotSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""
    ADMIN_TELEGRAM_IDS: str = ""
    ALLOW_ALL_USERS: bool = False
    TICKERS: str = "SBER,GAZP,LKOH"
    STORAGE: str = "json"
    DATA_DIR: str = "./data"
    DATABASE_PATH: str = "./tracker.db"
    DATABASE_URL: str = ""
    MOCK_MODE: bool = False
    MOCK_BARS_CSV: str = ""
    MOEX_API_TIMEOUT: float = 10.0
    ALOR_API_TIMEOUT: float = 15.0
    FETCH_RETRIES: int = 2
    TRACK_INTERVAL_SECONDS: int = 60
    LOOKBACK_SECONDS: int = 60
    SIGNAL_INTERVAL_SECONDS: int = 3600
    HISTORY_DAYS: int = 30
    BAR_SECONDS: int = 900
    DONCHIAN_LENGTH: int = 50
    LOCAL_LENGTH: int = 1
    RETEST_TOLERANCE: float = 0.002
    MIN_BARS: int = 20
    TAKE_PROFIT_PCT: float = 2.0
    STOP_LOSS_PCT: float = 0.5
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "./logs"


class RuntimeConfig(BaseModel):
    tickers: list[str]
    mock_mode: bool = False
    track_interval_seconds: int = 60
    lookback_seconds: int = 60
    signal_interval_seconds: int = 3600
    history_days: int = 30
    bar_seconds: int = 900
    donchian_length: int = 50
    local_length: int = 1
    retest_tolerance: float = 0.002
    min_bars: int = 20
    take_profit_pct: float = 2.0
    stop_loss_pct: float = 0.5


def parse_tickers(raw: Any) -> list[str]:
    if isinstance(raw, list):
        items = raw
    else:
        items = str(raw or "").split(",")
    return [str(t).strip().upper() for t in items if str(t).strip()]


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _positive_int(value: Any) -> int:
    number = int(value)
    if number <= 0:
        raise ValueError(f"expected a positive integer, got {value!r}")
    return number


def _non_negative_float(value: Any) -> float:
    number = float(value)
    if number < 0:
        raise ValueError(f"expected a non-negative number, got {value!r}")
    return number


RUNTIME_SETTINGS: dict[str, Callable[[Any], Any]] = {
    "TICKERS": parse_tickers,
    "MOCK_MODE": _flag,
    "TRACK_INTERVAL_SECONDS": _positive_int,
    "LOOKBACK_SECONDS": _positive_int,
    "SIGNAL_INTERVAL_SECONDS": _positive_int,
    "HISTORY_DAYS": _positive_int,
    "BAR_SECONDS": _positive_int,
    "DONCHIAN_LENGTH": _positive_int,
    "LOCAL_LENGTH": _positive_int,
    "RETEST_TOLERANCE": _non_negative_float,
    "MIN_BARS": _positive_int,
    "TAKE_PROFIT_PCT": _non_negative_float,
    "STOP_LOSS_PCT": _non_negative_float,
}


class ConfigService:
    """Runtime config: values from the settings bucket win over .env."""

    def __init__(self, store: BaseStore, base: BotSettings) -> None:
        self.store = store
        self.base = base

    def _value(self, key: str) -> Any:
        coerce = RUNTIME_SETTINGS[key]
        default = getattr(self.base, key)
        stored = self.store.get_setting(key, default)
        try:
            return coerce(stored)
        except (TypeError, ValueError):
            logger.warning("Ignoring stored {}={!r}, using {!r}", key, stored, default)
            return coerce(default)

    def load(self) -> RuntimeConfig:
        return RuntimeConfig(**{key.lower(): self._value(key) for key in RUNTIME_SETTINGS})

    def update(self, key: str, value: Any) -> Any:
        if key not in RUNTIME_SETTINGS:
            if hasattr(self.base, key):
                raise ValueError(f"{key} cannot be changed at runtime")
            raise ValueError(f"Unknown setting: {key}")
        try:
            coerced = RUNTIME_SETTINGS[key](value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for {key}: {value!r}") from exc
        if key == "TICKERS" and not coerced:
            raise ValueError("TICKERS must name at least one ticker")
        self.store.set_setting(key, coerced)
        return coerced
