from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from bridge.contexts.erp.application.retry_policy import DEFAULT_BACKOFF_SCHEDULE_SECONDS, normalize_schedule


@dataclass(frozen=True)
class BridgeSettings:
    """Values the orchestrator consumes. Built once from the app config."""

    poll_interval_seconds: float = 30.0
    orders_enabled: bool = True
    products_enabled: bool = True
    customers_enabled: bool = True
    balances_enabled: bool = False
    products_interval_seconds: float = 3600.0
    customers_interval_seconds: float = 3600.0
    balances_interval_seconds: float = 1800.0
    max_attempts: int = 3
    backoff_schedule: tuple[float, ...] = field(default=DEFAULT_BACKOFF_SCHEDULE_SECONDS)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "BridgeSettings":
        return cls(
            poll_interval_seconds=float(_int_config(config, "POLL_INTERVAL_SECONDS", 30, 1, 3600)),
            orders_enabled=_bool_config(config, "SYNC_ORDERS_ENABLED", True),
            products_enabled=_bool_config(config, "SYNC_PRODUCTS_ENABLED", True),
            customers_enabled=_bool_config(config, "SYNC_CUSTOMERS_ENABLED", True),
            balances_enabled=_bool_config(config, "SYNC_BALANCES_ENABLED", False),
            products_interval_seconds=60.0 * _int_config(config, "PRODUCTS_SYNC_INTERVAL_MINUTES", 60, 1, 10_080),
            customers_interval_seconds=60.0 * _int_config(config, "CUSTOMERS_SYNC_INTERVAL_MINUTES", 60, 1, 10_080),
            balances_interval_seconds=60.0 * _int_config(config, "BALANCES_SYNC_INTERVAL_MINUTES", 30, 1, 10_080),
            max_attempts=_int_config(config, "ERP_MAX_ATTEMPTS", 3, 1, 20),
            backoff_schedule=_schedule_config(config, "ERP_BACKOFF_SCHEDULE_SECONDS"),
        )


def _int_config(config: Mapping[str, Any], key: str, default: int, min_value: int, max_value: int) -> int:
    try:
        value = int(config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(min_value, min(value, max_value))


def _schedule_config(config: Mapping[str, Any], key: str) -> tuple[float, ...]:
    value = config.get(key)
    if isinstance(value, str):
        value = [item.strip() for item in value.split(",") if item.strip()]
    return normalize_schedule(value)


def _bool_config(config: Mapping[str, Any], key: str, default: bool) -> bool:
    value = config.get(key, default)
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
