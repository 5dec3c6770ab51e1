from __future__ import annotations

import threading
from collections import deque
from decimal import Decimal
from typing import Callable, List, Sequence

from bridge.contexts.erp.domain.gateway import ErpGateway
from bridge.contexts.orders.domain.models import (
    Customer,
    CustomerBalance,
    DocumentResult,
    Order,
    OrderLine,
    Product,
)
from bridge.contexts.orders.domain.source import RemoteOrderSource


def make_order(order_id: int, *, status: str = "pending", lines: int = 1, quantity: str = "2") -> Order:
    return Order(
        id=order_id,
        status=status,
        lines=[
            OrderLine(product_code=f"P-{idx:04d}", quantity=Decimal(quantity), net_price=Decimal("10.00"))
            for idx in range(1, lines + 1)
        ],
        customer=Customer(name="Acme Sp. z o.o.", erp_id="100"),
        total_net=Decimal("20.00"),
    )


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


class RecordingWait:
    """Replacement for ``stop_event.wait`` that never blocks.

    Records every requested delay. ``on_wait`` may set the stop event to
    simulate a signal arriving mid-backoff.
    """

    def __init__(self, stop_event: threading.Event | None = None, on_wait: Callable[[float], None] | None = None) -> None:
        self.delays: List[float] = []
        self._stop_event = stop_event
        self._on_wait = on_wait

    def __call__(self, seconds: float) -> bool:
        self.delays.append(seconds)
        if self._on_wait is not None:
            self._on_wait(seconds)
        return bool(self._stop_event is not None and self._stop_event.is_set())


class FakeOrderSource(RemoteOrderSource):
    def __init__(self, batches: Sequence[Sequence[Order]] | None = None, *, healthy: bool = True) -> None:
        self.batches = deque(list(batch) for batch in (batches or []))
        self.healthy = healthy
        self.fetch_calls = 0
        self.updates: List[tuple] = []
        self.update_results: deque = deque()
        self.fetch_error: Exception | None = None
        self.pushed_products: List[List[Product]] = []
        self.pushed_customers: List[List[Customer]] = []
        self.pushed_balances: List[List[CustomerBalance]] = []
        self.push_accepts = True

    def fetch_pending(self) -> List[Order]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        if not self.batches:
            return []
        return self.batches.popleft()

    def update_status(self, order_id, status, document_ref=None, error=None) -> bool:
        self.updates.append((order_id, status, document_ref, error))
        if self.update_results:
            outcome = self.update_results.popleft()
            if isinstance(outcome, BaseException):
                raise outcome
            return bool(outcome)
        return True

    def health_check(self) -> bool:
        return self.healthy

    def push_products(self, products) -> bool:
        self.pushed_products.append(list(products))
        return self.push_accepts

    def push_customers(self, customers) -> bool:
        self.pushed_customers.append(list(customers))
        return self.push_accepts

    def push_balances(self, balances) -> bool:
        self.pushed_balances.append(list(balances))
        return self.push_accepts

    def updates_for(self, order_id: int) -> List[tuple]:
        return [update for update in self.updates if update[0] == order_id]


class FakeGateway(ErpGateway):
    """Scripted ERP: ``outcomes`` is consumed one entry per create_document call.

    Exceptions are raised, DocumentResult values returned. With the script
    exhausted every call succeeds.
    """

    def __init__(self, outcomes: Sequence[object] | None = None, *, connected: bool = True) -> None:
        self.outcomes = deque(outcomes or [])
        self.connected = connected
        self.connect_results: deque = deque()
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.calls: List[int] = []
        self.documents: List[Order] = []
        self.products: List[Product] = [Product(code="P-0001", name="Paper", net_price=Decimal("1"))]
        self.customers: List[Customer] = [Customer(name="Acme", erp_id="100")]
        self.balances: List[CustomerBalance] = []
        self.products_error: Exception | None = None
        self.customers_error: Exception | None = None

    def connect(self) -> bool:
        self.connect_calls += 1
        if self.connect_results:
            self.connected = bool(self.connect_results.popleft())
        else:
            self.connected = True
        return self.connected

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    def create_document(self, order: Order) -> DocumentResult:
        self.calls.append(order.id)
        self.documents.append(order)
        if self.outcomes:
            outcome = self.outcomes.popleft()
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return DocumentResult.succeeded(order.id, f"NEXO-{order.id}-20260101120000", f"ZK/2026/{order.id:05d}")

    def fetch_products(self) -> List[Product]:
        if self.products_error is not None:
            raise self.products_error
        return list(self.products)

    def fetch_customers(self) -> List[Customer]:
        if self.customers_error is not None:
            raise self.customers_error
        return list(self.customers)

    def fetch_balances(self) -> List[CustomerBalance]:
        return list(self.balances)
