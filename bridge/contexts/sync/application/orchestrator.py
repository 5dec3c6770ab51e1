from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from bridge.contexts.erp.application.retry_policy import RetryPolicy
from bridge.contexts.erp.domain.gateway import ErpGateway
from bridge.contexts.orders.application.lifecycle import OrderLifecycle
from bridge.contexts.orders.domain.models import (
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_FAILED,
    ORDER_STATUS_PENDING,
)
from bridge.contexts.orders.domain.source import RemoteOrderSource
from bridge.contexts.sync.application.catalog_sync import CatalogSync, build_periodic_tasks
from bridge.contexts.sync.application.scheduler import (
    TASK_ORDERS,
    SyncCursor,
    SyncResult,
    SyncScheduler,
    build_cursors,
)
from bridge.observability import bind_tick_id, observe_erp_reconnect, observe_tick
from bridge.settings import BridgeSettings


@dataclass
class TickSummary:
    tick_id: str
    started_at: float
    orders_fetched: int = 0
    orders_completed: int = 0
    orders_failed: int = 0
    orders_cancelled: int = 0
    orders_skipped: int = 0
    remote_unavailable: bool = False
    erp_unavailable: bool = False
    erp_connected: bool = False
    sync_results: List[SyncResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "tick_id": self.tick_id,
            "orders_fetched": self.orders_fetched,
            "orders_completed": self.orders_completed,
            "orders_failed": self.orders_failed,
            "orders_cancelled": self.orders_cancelled,
            "orders_skipped": self.orders_skipped,
            "remote_unavailable": self.remote_unavailable,
            "erp_unavailable": self.erp_unavailable,
            "erp_connected": self.erp_connected,
            "sync": [result.to_dict() for result in self.sync_results],
            "errors": list(self.errors),
            "duration_seconds": round(self.duration_seconds, 3),
        }


class Orchestrator:
    """Single cooperative loop interleaving order processing and catalog sync.

    Everything runs on the caller's thread. The shared ``stop_event`` is the
    only cancellation signal; the inter-tick sleep and the retry backoff both
    wait on it and return as soon as it is set.
    """

    def __init__(
        self,
        *,
        order_source: RemoteOrderSource,
        gateway: ErpGateway,
        lifecycle: OrderLifecycle,
        scheduler: SyncScheduler,
        cursors: Dict[str, SyncCursor] | None = None,
        poll_interval_seconds: float = 30.0,
        stop_event: threading.Event | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._order_source = order_source
        self._gateway = gateway
        self._lifecycle = lifecycle
        self._scheduler = scheduler
        self._cursors = cursors if cursors is not None else build_cursors(scheduler.tasks)
        self.poll_interval_seconds = max(0.0, float(poll_interval_seconds))
        self._stop_event = stop_event or threading.Event()
        self._logger = logger or logging.getLogger("bridge.orchestrator")

        self._erp_connected = False
        self._ticks = 0
        self._last_summary: TickSummary | None = None

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    @property
    def cursors(self) -> Dict[str, SyncCursor]:
        return self._cursors

    def stop(self) -> None:
        self._stop_event.set()

    def run(self, *, max_ticks: int | None = None) -> None:
        self._logger.info(
            "bridge_worker_starting",
            extra={"poll_interval_seconds": self.poll_interval_seconds},
        )
        self._connect_erp("startup")
        try:
            while not self._stop_event.is_set():
                self.run_once()
                if max_ticks is not None and self._ticks >= max_ticks:
                    break
                if self._stop_event.wait(self.poll_interval_seconds):
                    break
        finally:
            self._disconnect_erp()
            self._logger.info("bridge_worker_stopped", extra={"ticks": self._ticks})

    def run_once(self) -> TickSummary:
        tick_id = f"tick-{uuid.uuid4().hex[:12]}"
        summary = TickSummary(tick_id=tick_id, started_at=time.monotonic())
        with bind_tick_id(tick_id):
            self._ensure_erp_connection()
            summary.erp_connected = self._erp_connected

            due = self._scheduler.due_tasks(self._cursors)
            if TASK_ORDERS in due and not self._erp_connected:
                summary.erp_unavailable = True
                self._logger.warning("erp_unavailable_skipping_orders")
            elif TASK_ORDERS in due:
                try:
                    self._process_orders(summary)
                except Exception as exc:  # noqa: BLE001 - the loop must survive any order-side fault
                    summary.errors.append(f"orders: {exc}")
                    self._logger.exception("order_processing_tick_error")

            periodic = [name for name in due if name != TASK_ORDERS]
            if periodic and not self._stop_event.is_set():
                try:
                    summary.sync_results = self._scheduler.run_periodic(
                        periodic,
                        self._cursors,
                        should_stop=self._stop_event.is_set,
                    )
                except Exception as exc:  # noqa: BLE001 - the loop must survive any sync-side fault
                    summary.errors.append(f"sync: {exc}")
                    self._logger.exception("sync_tick_error")

            summary.duration_seconds = time.monotonic() - summary.started_at
            self._ticks += 1
            self._last_summary = summary
            observe_tick(summary.duration_seconds, errors=len(summary.errors))
            self._logger.info("bridge_tick_completed", extra=summary.to_dict())
        return summary

    def snapshot(self) -> dict:
        now = self._scheduler.now()
        return {
            "erp_connected": self._erp_connected,
            "stopping": self._stop_event.is_set(),
            "ticks": self._ticks,
            "poll_interval_seconds": self.poll_interval_seconds,
            "last_tick": self._last_summary.to_dict() if self._last_summary is not None else None,
            "cursors": {
                name: {
                    "interval_seconds": cursor.interval_seconds,
                    "last_run_age_seconds": cursor.age(now),
                    "due": cursor.is_due(now),
                }
                for name, cursor in self._cursors.items()
            },
        }

    def _process_orders(self, summary: TickSummary) -> None:
        if not self._order_source.health_check():
            summary.remote_unavailable = True
            self._logger.warning("remote_unhealthy_skipping_orders")
            return

        orders = list(self._order_source.fetch_pending() or [])
        summary.orders_fetched = len(orders)
        if not orders:
            self._logger.debug("no_pending_orders")
            return

        self._logger.info("pending_orders_fetched", extra={"count": len(orders)})
        observed: set[int] = set()
        for order in orders:
            if self._stop_event.is_set():
                break
            if order.id in observed:
                summary.orders_skipped += 1
                self._logger.warning("order_duplicate_in_batch", extra={"order_id": order.id})
                continue
            if order.status != ORDER_STATUS_PENDING:
                summary.orders_skipped += 1
                self._logger.warning(
                    "order_not_pending_skipped",
                    extra={"order_id": order.id, "status": order.status},
                )
                continue
            observed.add(order.id)

            try:
                outcome = self._lifecycle.run(order)
            except Exception:  # noqa: BLE001 - one bad order must not stop the batch
                summary.orders_failed += 1
                self._logger.exception("order_lifecycle_error", extra={"order_id": order.id})
                continue

            if outcome.cancelled:
                summary.orders_cancelled += 1
            elif outcome.status == ORDER_STATUS_COMPLETED:
                summary.orders_completed += 1
            elif outcome.status == ORDER_STATUS_FAILED:
                summary.orders_failed += 1

    def _ensure_erp_connection(self) -> None:
        try:
            connected = bool(self._gateway.is_connected())
        except Exception:  # noqa: BLE001 - a failing check counts as a lost connection
            self._logger.exception("erp_connection_check_error")
            connected = False
        self._erp_connected = connected
        if not connected:
            self._connect_erp("reconnect")

    def _connect_erp(self, reason: str) -> bool:
        self._logger.info("erp_connecting", extra={"reason": reason})
        try:
            connected = bool(self._gateway.connect())
        except Exception:  # noqa: BLE001 - connection is opportunistic, retried next tick
            self._logger.exception("erp_connect_error", extra={"reason": reason})
            connected = False
        self._erp_connected = connected
        observe_erp_reconnect("success" if connected else "failure")
        if connected:
            self._logger.info("erp_connected", extra={"reason": reason})
        else:
            self._logger.warning("erp_connect_failed_will_retry", extra={"reason": reason})
        return connected

    def _disconnect_erp(self) -> None:
        try:
            self._gateway.disconnect()
        except Exception:  # noqa: BLE001 - shutdown continues regardless
            self._logger.exception("erp_disconnect_error")
        self._erp_connected = False


def build_orchestrator(
    settings: BridgeSettings,
    order_source: RemoteOrderSource,
    gateway: ErpGateway,
    *,
    stop_event: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    wait: Callable[[float], bool] | None = None,
) -> Orchestrator:
    event = stop_event or threading.Event()
    retry_policy = RetryPolicy(
        max_attempts=settings.max_attempts,
        backoff_schedule=settings.backoff_schedule,
        stop_event=event,
        wait=wait,
    )
    lifecycle = OrderLifecycle(
        order_source,
        gateway,
        retry_policy,
        max_attempts=settings.max_attempts,
        backoff_schedule=settings.backoff_schedule,
    )
    tasks = build_periodic_tasks(
        CatalogSync(gateway, order_source),
        products_interval_seconds=settings.products_interval_seconds,
        customers_interval_seconds=settings.customers_interval_seconds,
        balances_interval_seconds=settings.balances_interval_seconds,
        products_enabled=settings.products_enabled,
        customers_enabled=settings.customers_enabled,
        balances_enabled=settings.balances_enabled,
    )
    scheduler = SyncScheduler(tasks, orders_enabled=settings.orders_enabled, clock=clock)
    return Orchestrator(
        order_source=order_source,
        gateway=gateway,
        lifecycle=lifecycle,
        scheduler=scheduler,
        poll_interval_seconds=settings.poll_interval_seconds,
        stop_event=event,
    )
