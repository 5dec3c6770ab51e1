from __future__ import annotations

from typing import Any, Mapping

from bridge.contexts.erp.domain.gateway import ErpGateway
from bridge.contexts.orders.domain.source import RemoteOrderSource
from bridge.errors import ConfigurationError


ERP_MODES = ("simulator", "sql", "proxy")


def resolve_erp_mode(config: Mapping[str, Any], override: str | None = None) -> str:
    mode = str(override or config.get("ERP_MODE") or "simulator").strip().lower()
    if mode not in ERP_MODES:
        raise ConfigurationError(f"ERP_MODE invalid: {mode} (expected one of {', '.join(ERP_MODES)})")
    return mode


def build_gateway(config: Mapping[str, Any], mode: str | None = None) -> ErpGateway:
    mode = resolve_erp_mode(config, mode)
    if mode == "simulator":
        from bridge.contexts.erp.infrastructure.simulator_gateway import SimulatorErpGateway

        return SimulatorErpGateway(
            seed=int(config.get("ERP_SIMULATOR_SEED") or 42),
            document_type=str(config.get("ERP_DOCUMENT_TYPE") or "ZK"),
        )

    from bridge.contexts.erp.infrastructure.proxy_gateway import ProxyErpGateway

    if mode == "proxy":
        if not config.get("ERP_PROXY_URL"):
            raise ConfigurationError("ERP_PROXY_URL not set for ERP_MODE=proxy.")
        return ProxyErpGateway.from_config(config)

    from bridge.contexts.erp.infrastructure.sql_gateway import SqlErpGateway

    if not config.get("ERP_SQL_URL"):
        raise ConfigurationError("ERP_SQL_URL not set for ERP_MODE=sql.")
    writer = ProxyErpGateway.from_config(config) if config.get("ERP_PROXY_URL") else None
    return SqlErpGateway.from_config(config, document_writer=writer)


def build_order_source(config: Mapping[str, Any]) -> RemoteOrderSource:
    from bridge.contexts.orders.infrastructure.cloud_client import CloudApiOrderSource

    if not config.get("CLOUD_API_BASE_URL"):
        raise ConfigurationError("CLOUD_API_BASE_URL not set.")
    return CloudApiOrderSource.from_config(config)
