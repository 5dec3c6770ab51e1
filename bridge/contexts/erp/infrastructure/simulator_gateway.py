from __future__ import annotations

import hashlib
import logging
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Callable, Deque, Dict, Iterable, List

from bridge.contexts.erp.domain.gateway import ErpGateway
from bridge.contexts.orders.domain.models import (
    Customer,
    CustomerBalance,
    DocumentResult,
    Order,
    Product,
    validate_order,
)
from bridge.errors import ErpGatewayError
from bridge.messages import error_message


def _default_products() -> List[Product]:
    return [
        Product(code="P-0001", name="Paper A4 80g", erp_id="1", net_price=Decimal("19.90"), vat_rate=Decimal("23")),
        Product(code="P-0002", name="Toner black", erp_id="2", net_price=Decimal("249.00"), vat_rate=Decimal("23")),
        Product(code="P-0003", name="Stapler", erp_id="3", net_price=Decimal("35.50"), vat_rate=Decimal("23")),
    ]


def _default_customers() -> List[Customer]:
    return [
        Customer(name="Acme Sp. z o.o.", erp_id="100", city="Warszawa", tax_id="5250000001"),
        Customer(name="Globex S.A.", erp_id="101", city="Krakow", tax_id="6760000002"),
    ]


def _default_balances() -> List[CustomerBalance]:
    return [
        CustomerBalance(erp_id="100", balance=Decimal("1250.00"), credit_limit=Decimal("5000.00")),
        CustomerBalance(erp_id="101", balance=Decimal("0"), credit_limit=None),
    ]


class SimulatorErpGateway(ErpGateway):
    """In-process ERP for local runs and tests.

    Document ids and numbers follow the production shape
    (``NEXO-{order}-{timestamp}`` and ``{type}/{year}/{order:05d}``). Outcomes
    are deterministic: a scripted outcome queued for the order wins, then the
    seeded failure buckets, then success.
    """

    def __init__(
        self,
        seed: int = 42,
        *,
        document_type: str = "ZK",
        transient_failure_percent: int = 0,
        rejection_percent: int = 0,
        products: Iterable[Product] | None = None,
        customers: Iterable[Customer] | None = None,
        balances: Iterable[CustomerBalance] | None = None,
        now: Callable[[], datetime] = datetime.now,
        logger: logging.Logger | None = None,
    ) -> None:
        self.seed = int(seed)
        self.document_type = str(document_type or "ZK").strip() or "ZK"
        self.transient_failure_percent = max(0, min(100, int(transient_failure_percent)))
        self.rejection_percent = max(0, min(100 - self.transient_failure_percent, int(rejection_percent)))
        self.products = list(products) if products is not None else _default_products()
        self.customers = list(customers) if customers is not None else _default_customers()
        self.balances = list(balances) if balances is not None else _default_balances()
        self._now = now
        self._logger = logger or logging.getLogger("bridge.erp.simulator")

        self._connected = False
        self._connect_failures = 0
        self._scripted: Dict[int, Deque[object]] = {}
        self.created_documents: List[DocumentResult] = []
        self.create_calls = 0

    def script(self, order_id: int, *outcomes: object) -> None:
        """Queue outcomes for ``order_id``: exceptions are raised, results returned."""
        self._scripted.setdefault(int(order_id), deque()).extend(outcomes)

    def fail_next_connects(self, count: int) -> None:
        self._connect_failures = max(0, int(count))

    def connect(self) -> bool:
        if self._connect_failures > 0:
            self._connect_failures -= 1
            self._connected = False
            self._logger.warning("erp_simulator_connect_refused")
            return False
        self._connected = True
        self._logger.info("erp_simulator_connected", extra={"seed": self.seed})
        return True

    def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def drop_connection(self) -> None:
        self._connected = False

    def create_document(self, order: Order) -> DocumentResult:
        self.create_calls += 1
        if not self._connected:
            raise ErpGatewayError(error_message("erp_not_connected"), code="not_connected")

        scripted = self._scripted.get(order.id)
        if scripted:
            outcome = scripted.popleft()
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome  # type: ignore[return-value]

        problems = validate_order(order)
        if problems:
            return DocumentResult.failed(order.id, " ".join(error_message(key) for key in problems))

        bucket = self._bucket(order.id)
        if bucket < self.transient_failure_percent:
            return DocumentResult.failed(order.id, error_message("erp_temporarily_unavailable"), retryable=True)
        if bucket < self.transient_failure_percent + self.rejection_percent:
            return DocumentResult.failed(order.id, error_message("erp_document_rejected"))

        stamp = self._now()
        result = DocumentResult.succeeded(
            order.id,
            f"NEXO-{order.id}-{stamp:%Y%m%d%H%M%S}",
            f"{self.document_type}/{stamp:%Y}/{order.id:05d}",
        )
        self.created_documents.append(result)
        self._logger.info(
            "erp_simulator_document_created",
            extra={"order_id": order.id, "document_id": result.document_id, "document_number": result.document_number},
        )
        return result

    def fetch_products(self) -> List[Product]:
        self._require_connection()
        return list(self.products)

    def fetch_customers(self) -> List[Customer]:
        self._require_connection()
        return list(self.customers)

    def fetch_balances(self) -> List[CustomerBalance]:
        self._require_connection()
        return list(self.balances)

    def _require_connection(self) -> None:
        if not self._connected:
            raise ErpGatewayError(error_message("erp_not_connected"), code="not_connected")

    def _bucket(self, order_id: int) -> int:
        digest = hashlib.sha256(f"{self.seed}:{order_id}".encode("utf-8")).hexdigest()
        return int(digest[:8], 16) % 100
