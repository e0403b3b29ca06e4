from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_URL_ENV = "READINGS_STORE_URL"
_TABLE_NAME_ENV = "READINGS_TABLE_NAME"
_STORE_PATH_ENV = "READINGS_PERSISTENCE_PATH"
_BROKER_ROOT_ENV = "BROKER_ROOT_PATH"
_THRESHOLD_ENV = "HOT_DEVICE_THRESHOLD"
_LOG_LEVEL_ENV = "LOG_LEVEL"
_POLL_INTERVAL_ENV = "READINGS_POLL_INTERVAL"


@dataclass(frozen=True)
class Settings:
    store_url: Optional[str]
    table_name: str
    store_persistence_path: Optional[str]
    broker_root_path: Optional[str]
    hot_threshold: float
    log_level: str
    feed_poll_interval: float


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        return float(candidate)
    except ValueError:
        return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_url=_read_optional_env(_STORE_URL_ENV, None),
        table_name=_read_str_env(_TABLE_NAME_ENV, "sensors"),
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/sensors.jsonl"),
        broker_root_path=_read_optional_env(_BROKER_ROOT_ENV, "./tmp/broker"),
        hot_threshold=_read_float_env(_THRESHOLD_ENV, 60.0),
        log_level=_read_log_level("INFO"),
        feed_poll_interval=max(_read_float_env(_POLL_INTERVAL_ENV, 1.0), 0.0),
    )
