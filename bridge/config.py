import os

from bridge.errors import ConfigurationError


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_list_env(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    value = os.environ.get(name)
    if value is None:
        return default
    items = []
    for raw in value.split(","):
        raw = raw.strip()
        if not raw:
            continue
        try:
            items.append(float(raw))
        except ValueError:
            return default
    return tuple(items) or default


class Config:
    BRIDGE_ENV = os.environ.get("BRIDGE_ENV", "development").lower()

    CLOUD_API_BASE_URL = os.environ.get("CLOUD_API_BASE_URL", "http://localhost:3000")
    CLOUD_API_KEY = os.environ.get("CLOUD_API_KEY", "")
    CLOUD_API_CLIENT_ID = os.environ.get("CLOUD_API_CLIENT_ID", "")
    CLOUD_API_TIMEOUT_SECONDS = _int_env("CLOUD_API_TIMEOUT_SECONDS", 30)
    CLOUD_API_VERIFY_SSL = _bool_env("CLOUD_API_VERIFY_SSL", True)

    POLL_INTERVAL_SECONDS = _int_env("POLL_INTERVAL_SECONDS", 30)
    SYNC_ORDERS_ENABLED = _bool_env("SYNC_ORDERS_ENABLED", True)
    SYNC_PRODUCTS_ENABLED = _bool_env("SYNC_PRODUCTS_ENABLED", True)
    SYNC_CUSTOMERS_ENABLED = _bool_env("SYNC_CUSTOMERS_ENABLED", True)
    SYNC_BALANCES_ENABLED = _bool_env("SYNC_BALANCES_ENABLED", False)
    PRODUCTS_SYNC_INTERVAL_MINUTES = _int_env("PRODUCTS_SYNC_INTERVAL_MINUTES", 60)
    CUSTOMERS_SYNC_INTERVAL_MINUTES = _int_env("CUSTOMERS_SYNC_INTERVAL_MINUTES", 60)
    BALANCES_SYNC_INTERVAL_MINUTES = _int_env("BALANCES_SYNC_INTERVAL_MINUTES", 30)

    ERP_MAX_ATTEMPTS = _int_env("ERP_MAX_ATTEMPTS", 3)
    ERP_BACKOFF_SCHEDULE_SECONDS = _float_list_env("ERP_BACKOFF_SCHEDULE_SECONDS", (2.0, 5.0, 10.0))

    ERP_MODE = os.environ.get("ERP_MODE", "simulator")
    ERP_SQL_URL = os.environ.get("ERP_SQL_URL")
    ERP_SQL_PRODUCTS_VIEW = os.environ.get("ERP_SQL_PRODUCTS_VIEW", "bridge_products")
    ERP_SQL_CUSTOMERS_VIEW = os.environ.get("ERP_SQL_CUSTOMERS_VIEW", "bridge_customers")
    ERP_SQL_BALANCES_VIEW = os.environ.get("ERP_SQL_BALANCES_VIEW", "bridge_customer_balances")
    ERP_PROXY_URL = os.environ.get("ERP_PROXY_URL")
    ERP_PROXY_TIMEOUT_SECONDS = _int_env("ERP_PROXY_TIMEOUT_SECONDS", 60)
    ERP_DOCUMENT_TYPE = os.environ.get("ERP_DOCUMENT_TYPE", "ZK")
    ERP_WAREHOUSE = os.environ.get("ERP_WAREHOUSE", "MAG")
    ERP_SIMULATOR_SEED = _int_env("ERP_SIMULATOR_SEED", 42)

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    HEALTH_PORT = _int_env("HEALTH_PORT", 0)

    def __init__(self):
        if self.BRIDGE_ENV == "production" and not self.CLOUD_API_KEY:
            raise ConfigurationError("CLOUD_API_KEY not set for production environment.", code="cloud_api_key_missing")
        if self.BRIDGE_ENV == "production" and str(self.ERP_MODE).strip().lower() == "simulator":
            raise ConfigurationError("ERP_MODE=simulator is not allowed in production.", code="erp_mode_forbidden")
