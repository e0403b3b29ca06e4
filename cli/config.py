from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 5.0
DEFAULT_FLEET_SIZE = 50
DEFAULT_RATE = 25.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF = 0.25

_BASE_URL_ENV = "API_BASE_URL"
_TIMEOUT_ENV = "CLI_REQUEST_TIMEOUT"
_FLEET_SIZE_ENV = "FLEET_SIZE"
_RATE_ENV = "FLEET_RATE"
_MAX_ATTEMPTS_ENV = "RETRY_MAX_ATTEMPTS"
_BACKOFF_ENV = "RETRY_BACKOFF_SECONDS"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = DEFAULT_TIMEOUT
    fleet_size: int = DEFAULT_FLEET_SIZE
    rate: float = DEFAULT_RATE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: float = DEFAULT_BACKOFF


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    request_timeout: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    if request_timeout is None:
        request_timeout = _read_float(os.getenv(_TIMEOUT_ENV), DEFAULT_TIMEOUT)
    return CLIConfig(
        base_url=url.rstrip("/"),
        request_timeout=request_timeout,
        fleet_size=_read_int(os.getenv(_FLEET_SIZE_ENV), DEFAULT_FLEET_SIZE),
        rate=_read_float(os.getenv(_RATE_ENV), DEFAULT_RATE),
        max_attempts=_read_int(os.getenv(_MAX_ATTEMPTS_ENV), DEFAULT_MAX_ATTEMPTS),
        backoff=_read_float(os.getenv(_BACKOFF_ENV), DEFAULT_BACKOFF),
    )
