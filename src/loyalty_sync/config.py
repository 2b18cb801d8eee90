from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Iterable

from dotenv import load_dotenv

MAX_GET_RETRIES = 2


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class StoreConfig:
    env_name: str
    store_url: str
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 20.0
    retries: int = 2
    retry_backoff_seconds: float = 1.0
    max_connections: int = 10
    verify_ssl: bool = True
    cache_ttl_seconds: float = 300.0
    cache_max_age_seconds: float = 86400.0
    poll_interval_seconds: float = 60.0
    refresh_debounce_seconds: float = 0.3
    earn_rate: Decimal = Decimal("0.01")
    app_name: str = "loyalty-sync"

    @property
    def normalized_env(self) -> str:
        return self.env_name.lower().strip()


def _require(values: dict[str, str | None], required: Iterable[str]) -> None:
    missing = [key for key in required if not values.get(key)]
    if missing:
        raise ConfigError(f"Missing required config values: {', '.join(missing)}")


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _read_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: expected a number, got {raw!r}") from exc


def _read_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {name}: expected an integer, got {raw!r}") from exc


def _read_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, TypeError) as exc:
        raise ConfigError(f"Invalid {name}: expected a decimal, got {raw!r}") from exc
    if not value.is_finite():
        raise ConfigError(f"Invalid {name}: expected a decimal, got {raw!r}")
    return value


def _validate(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def load_config(env_file: str | None = None) -> StoreConfig:
    """Load config from environment with optional .env override."""
    load_dotenv(env_file)

    env_name = (os.getenv("LOYALTY_ENV") or "dev").strip()
    env_key = env_name.upper()

    store_url = (
        (os.getenv(f"LOYALTY_STORE_URL_{env_key}") or "").strip()
        or (os.getenv("LOYALTY_STORE_URL") or "").strip()
    )

    timeout_seconds = _read_float("LOYALTY_TIMEOUT_SECONDS", "20")
    _validate(
        timeout_seconds > 0,
        f"Invalid LOYALTY_TIMEOUT_SECONDS: expected > 0, got {timeout_seconds}",
    )

    connect_timeout_seconds = _read_float(
        "LOYALTY_CONNECT_TIMEOUT_SECONDS", str(min(timeout_seconds, 5.0))
    )
    _validate(
        connect_timeout_seconds > 0,
        (
            "Invalid LOYALTY_CONNECT_TIMEOUT_SECONDS: "
            f"expected > 0, got {connect_timeout_seconds}"
        ),
    )

    read_timeout_seconds = _read_float(
        "LOYALTY_READ_TIMEOUT_SECONDS",
        str(max(timeout_seconds, connect_timeout_seconds)),
    )
    _validate(
        read_timeout_seconds > 0,
        f"Invalid LOYALTY_READ_TIMEOUT_SECONDS: expected > 0, got {read_timeout_seconds}",
    )

    # GET retries are capped; POST is never retried.
    retries = _read_int("LOYALTY_RETRIES", str(MAX_GET_RETRIES))
    _validate(
        0 <= retries <= MAX_GET_RETRIES,
        f"Invalid LOYALTY_RETRIES: expected 0..{MAX_GET_RETRIES}, got {retries}",
    )

    retry_backoff_seconds = _read_float("LOYALTY_RETRY_BACKOFF_SECONDS", "1.0")
    _validate(
        retry_backoff_seconds >= 0,
        (
            "Invalid LOYALTY_RETRY_BACKOFF_SECONDS: "
            f"expected >= 0, got {retry_backoff_seconds}"
        ),
    )

    max_connections = _read_int("LOYALTY_MAX_CONNECTIONS", "10")
    _validate(
        max_connections >= 1,
        f"Invalid LOYALTY_MAX_CONNECTIONS: expected >= 1, got {max_connections}",
    )

    cache_ttl_seconds = _read_float("LOYALTY_CACHE_TTL_SECONDS", "300")
    _validate(
        cache_ttl_seconds > 0,
        f"Invalid LOYALTY_CACHE_TTL_SECONDS: expected > 0, got {cache_ttl_seconds}",
    )

    cache_max_age_seconds = _read_float("LOYALTY_CACHE_MAX_AGE_SECONDS", "86400")
    _validate(
        cache_max_age_seconds >= cache_ttl_seconds,
        (
            "Invalid LOYALTY_CACHE_MAX_AGE_SECONDS: "
            f"expected >= {cache_ttl_seconds}, got {cache_max_age_seconds}"
        ),
    )

    poll_interval_seconds = _read_float("LOYALTY_POLL_INTERVAL_SECONDS", "60")
    _validate(
        poll_interval_seconds > 0,
        f"Invalid LOYALTY_POLL_INTERVAL_SECONDS: expected > 0, got {poll_interval_seconds}",
    )

    refresh_debounce_seconds = _read_float("LOYALTY_REFRESH_DEBOUNCE_SECONDS", "0.3")
    _validate(
        refresh_debounce_seconds >= 0,
        (
            "Invalid LOYALTY_REFRESH_DEBOUNCE_SECONDS: "
            f"expected >= 0, got {refresh_debounce_seconds}"
        ),
    )

    earn_rate = _read_decimal("LOYALTY_EARN_RATE", "0.01")
    _validate(
        Decimal("0") < earn_rate <= Decimal("1"),
        f"Invalid LOYALTY_EARN_RATE: expected 0 < rate <= 1, got {earn_rate}",
    )

    verify_ssl = _coerce_bool(os.getenv("LOYALTY_VERIFY_SSL"), True)
    app_name = (os.getenv("LOYALTY_APP_NAME") or "loyalty-sync").strip()

    values = {"LOYALTY_STORE_URL": store_url}
    _require(values, ["LOYALTY_STORE_URL"])

    return StoreConfig(
        env_name=env_name,
        store_url=store_url.rstrip("/"),
        connect_timeout_seconds=connect_timeout_seconds,
        read_timeout_seconds=read_timeout_seconds,
        retries=retries,
        retry_backoff_seconds=retry_backoff_seconds,
        max_connections=max_connections,
        verify_ssl=verify_ssl,
        cache_ttl_seconds=cache_ttl_seconds,
        cache_max_age_seconds=cache_max_age_seconds,
        poll_interval_seconds=poll_interval_seconds,
        refresh_debounce_seconds=refresh_debounce_seconds,
        earn_rate=earn_rate,
        app_name=app_name,
    )
