from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

from bridge.contexts.orders.domain.models import Customer, CustomerBalance, Order, Product


class RemoteOrderSource(ABC):
    @abstractmethod
    def fetch_pending(self) -> List[Order]:
        raise NotImplementedError

    @abstractmethod
    def update_status(
        self,
        order_id: int,
        status: str,
        document_ref: str | None = None,
        error: str | None = None,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    def health_check(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def push_products(self, products: Sequence[Product]) -> bool:
        raise NotImplementedError

    @abstractmethod
    def push_customers(self, customers: Sequence[Customer]) -> bool:
        raise NotImplementedError

    def push_balances(self, balances: Sequence[CustomerBalance]) -> bool:
        return False

    def get_order(self, order_id: int) -> Order | None:
        return None
