from __future__ import annotations

import logging
import re
from typing import Any, Callable, List, Mapping, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from bridge.contexts.erp.domain.gateway import ErpGateway
from bridge.contexts.orders.domain.models import Customer, CustomerBalance, DocumentResult, Order, Product
from bridge.errors import ErpGatewayError
from bridge.messages import error_message


_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

T = TypeVar("T")


def _checked_identifier(name: str) -> str:
    value = str(name or "").strip()
    if not _IDENTIFIER.match(value):
        raise ValueError(f"invalid view name: {name!r}")
    return value


class SqlErpGateway(ErpGateway):
    """Reads ERP catalog data from SQL views.

    Views are plain read models maintained on the ERP side. Document creation
    is not possible over SQL, so it is delegated to ``document_writer`` when
    one is configured and rejected as definitive otherwise.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        products_view: str = "bridge_products",
        customers_view: str = "bridge_customers",
        balances_view: str = "bridge_customer_balances",
        document_writer: ErpGateway | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if engine is None and not str(url or "").strip():
            raise ValueError("either url or engine is required")
        self.url = url
        self.products_view = _checked_identifier(products_view)
        self.customers_view = _checked_identifier(customers_view)
        self.balances_view = _checked_identifier(balances_view)
        self.document_writer = document_writer
        self._engine = engine
        self._sql_connected = False
        self._logger = logger or logging.getLogger("bridge.erp.sql")

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, document_writer: ErpGateway | None = None) -> "SqlErpGateway":
        return cls(
            str(config.get("ERP_SQL_URL") or ""),
            products_view=str(config.get("ERP_SQL_PRODUCTS_VIEW") or "bridge_products"),
            customers_view=str(config.get("ERP_SQL_CUSTOMERS_VIEW") or "bridge_customers"),
            balances_view=str(config.get("ERP_SQL_BALANCES_VIEW") or "bridge_customer_balances"),
            document_writer=document_writer,
        )

    def connect(self) -> bool:
        try:
            if self._engine is None:
                self._engine = create_engine(str(self.url), pool_pre_ping=True)
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            self._logger.warning("erp_sql_connect_failed", extra={"error": str(exc).splitlines()[0]})
            self._sql_connected = False
            return False

        self._sql_connected = True
        if self.document_writer is not None and not self.document_writer.connect():
            # Views stay readable; only document creation waits for the writer.
            self._logger.warning("erp_document_writer_unavailable")
            return False
        return True

    def disconnect(self) -> None:
        self._sql_connected = False
        if self.document_writer is not None:
            self.document_writer.disconnect()
        if self._engine is not None and self.url:
            self._engine.dispose()
            self._engine = None

    def is_connected(self) -> bool:
        if not self._sql_connected:
            return False
        if self.document_writer is not None:
            return self.document_writer.is_connected()
        return True

    def can_read_catalog(self) -> bool:
        return self._sql_connected

    def create_document(self, order: Order) -> DocumentResult:
        if self.document_writer is None:
            raise ErpGatewayError(
                error_message("erp_document_writer_missing"),
                code="writer_missing",
                definitive=True,
            )
        return self.document_writer.create_document(order)

    def fetch_products(self) -> List[Product]:
        return self._read_view(self.products_view, Product.from_dict)

    def fetch_customers(self) -> List[Customer]:
        return self._read_view(self.customers_view, Customer.from_dict)

    def fetch_balances(self) -> List[CustomerBalance]:
        return self._read_view(self.balances_view, CustomerBalance.from_dict)

    def _read_view(self, view: str, build: Callable[[dict], T]) -> List[T]:
        if self._engine is None or not self._sql_connected:
            raise ErpGatewayError(error_message("erp_not_connected"), code="not_connected")
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(text(f"SELECT * FROM {view}")).mappings().all()
        except OperationalError as exc:
            if exc.connection_invalidated:
                self._sql_connected = False
            raise ErpGatewayError(f"ERP SQL read failed on {view}: {str(exc).splitlines()[0]}", code="connection_error") from exc
        except SQLAlchemyError as exc:
            raise ErpGatewayError(f"ERP SQL read failed on {view}: {str(exc).splitlines()[0]}", code="sql_error") from exc
        self._logger.debug("erp_sql_view_read", extra={"view": view, "rows": len(rows)})
        return [build(dict(row)) for row in rows]
