from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from bridge.contexts.orders.domain.models import Customer, CustomerBalance, DocumentResult, Order, Product
from bridge.errors import ErpGatewayError

__all__ = ["ErpGateway", "ErpGatewayError"]


class ErpGateway(ABC):
    @abstractmethod
    def connect(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def disconnect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_connected(self) -> bool:
        raise NotImplementedError

    def can_read_catalog(self) -> bool:
        """Whether catalog fetches can run; may hold while document creation cannot."""
        return self.is_connected()

    @abstractmethod
    def create_document(self, order: Order) -> DocumentResult:
        """Single attempt; retries belong to the caller."""
        raise NotImplementedError

    @abstractmethod
    def fetch_products(self) -> List[Product]:
        raise NotImplementedError

    @abstractmethod
    def fetch_customers(self) -> List[Customer]:
        raise NotImplementedError

    def fetch_balances(self) -> List[CustomerBalance]:
        return []
