from __future__ import annotations

import logging
from typing import Callable, List, Sequence

from bridge.contexts.erp.domain.gateway import ErpGateway
from bridge.contexts.orders.domain.source import RemoteOrderSource
from bridge.contexts.sync.application.scheduler import (
    TASK_BALANCES,
    TASK_CUSTOMERS,
    TASK_PRODUCTS,
    PeriodicTask,
    SyncResult,
)
from bridge.errors import ConnectivityError


class CatalogSync:
    """One-way mirror of ERP catalog data into the cloud API (last write wins)."""

    def __init__(
        self,
        gateway: ErpGateway,
        order_source: RemoteOrderSource,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._gateway = gateway
        self._order_source = order_source
        self._logger = logger or logging.getLogger("bridge.catalog_sync")

    def sync_products(self) -> SyncResult:
        return self._mirror(TASK_PRODUCTS, self._gateway.fetch_products, self._order_source.push_products)

    def sync_customers(self) -> SyncResult:
        return self._mirror(TASK_CUSTOMERS, self._gateway.fetch_customers, self._order_source.push_customers)

    def sync_balances(self) -> SyncResult:
        return self._mirror(TASK_BALANCES, self._gateway.fetch_balances, self._order_source.push_balances)

    def _mirror(self, task: str, fetch: Callable[[], List], push: Callable[[Sequence], bool]) -> SyncResult:
        if not self._gateway.can_read_catalog():
            raise ConnectivityError(f"ERP not connected; {task} sync skipped.")

        items = list(fetch() or [])
        if not items:
            self._logger.info("sync_nothing_to_push", extra={"task": task})
            return SyncResult(task=task, success=True, fetched=0, pushed=0)

        if not push(items):
            return SyncResult(
                task=task,
                success=False,
                fetched=len(items),
                pushed=0,
                error=f"Cloud API did not accept the {task} batch.",
            )
        return SyncResult(task=task, success=True, fetched=len(items), pushed=len(items))


def build_periodic_tasks(
    catalog_sync: CatalogSync,
    *,
    products_interval_seconds: float,
    customers_interval_seconds: float,
    balances_interval_seconds: float,
    products_enabled: bool = True,
    customers_enabled: bool = True,
    balances_enabled: bool = False,
) -> List[PeriodicTask]:
    return [
        PeriodicTask(TASK_PRODUCTS, products_interval_seconds, catalog_sync.sync_products, products_enabled),
        PeriodicTask(TASK_CUSTOMERS, customers_interval_seconds, catalog_sync.sync_customers, customers_enabled),
        PeriodicTask(TASK_BALANCES, balances_interval_seconds, catalog_sync.sync_balances, balances_enabled),
    ]
