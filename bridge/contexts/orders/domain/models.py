from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({ORDER_STATUS_COMPLETED, ORDER_STATUS_FAILED})


def _iso_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _safe_str(value: object | None) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def _safe_int(value: object | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _safe_decimal(value: object | None, default: Decimal | None = Decimal("0")) -> Decimal | None:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def _decimal_out(value: Decimal | None) -> float | None:
    if value is None:
        return None
    return float(value)


def _first(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def is_terminal(status: str | None) -> bool:
    return str(status or "").strip().lower() in TERMINAL_STATUSES


def normalize_status(value: object | None) -> str:
    status = str(value or "").strip().lower()
    # Unknown explicit values stay as they are so the worker skips them.
    return status or ORDER_STATUS_PENDING


@dataclass
class Customer:
    name: str
    id: int | None = None
    erp_id: str | None = None
    short_name: str | None = None
    address: str | None = None
    postal_code: str | None = None
    city: str | None = None
    phone: str | None = None
    email: str | None = None
    tax_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "nexoId": self.erp_id,
            "name": self.name,
            "shortName": self.short_name,
            "address": self.address,
            "postalCode": self.postal_code,
            "city": self.city,
            "phone1": self.phone,
            "email": self.email,
            "nip": self.tax_id,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "Customer":
        data = dict(payload or {})
        return Customer(
            id=_safe_int(data.get("id")),
            erp_id=_safe_str(_first(data, "nexoId", "erp_id")),
            name=str(data.get("name") or ""),
            short_name=_safe_str(_first(data, "shortName", "short_name")),
            address=_safe_str(data.get("address")),
            postal_code=_safe_str(_first(data, "postalCode", "postal_code")),
            city=_safe_str(data.get("city")),
            phone=_safe_str(_first(data, "phone1", "phone")),
            email=_safe_str(data.get("email")),
            tax_id=_safe_str(_first(data, "nip", "tax_id")),
        )


@dataclass
class Product:
    code: str
    name: str
    erp_id: str | None = None
    description: str | None = None
    net_price: Decimal = Decimal("0")
    gross_price: Decimal | None = None
    vat_rate: Decimal | None = None
    unit: str = "szt"
    ean: str | None = None
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "nexoId": self.erp_id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "priceNetto": _decimal_out(self.net_price),
            "priceBrutto": _decimal_out(self.gross_price),
            "vatRate": _decimal_out(self.vat_rate),
            "unit": self.unit,
            "ean": self.ean,
            "active": bool(self.active),
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "Product":
        data = dict(payload or {})
        active = _first(data, "active")
        return Product(
            erp_id=_safe_str(_first(data, "nexoId", "erp_id")),
            code=str(data.get("code") or ""),
            name=str(data.get("name") or ""),
            description=_safe_str(data.get("description")),
            net_price=_safe_decimal(_first(data, "priceNetto", "net_price")),
            gross_price=_safe_decimal(_first(data, "priceBrutto", "gross_price"), None),
            vat_rate=_safe_decimal(_first(data, "vatRate", "vat_rate"), None),
            unit=str(data.get("unit") or "szt"),
            ean=_safe_str(data.get("ean")),
            active=True if active is None else bool(active),
        )


@dataclass
class CustomerBalance:
    erp_id: str
    balance: Decimal = Decimal("0")
    credit_limit: Decimal | None = None
    updated_at: str = field(default_factory=_iso_now)

    @property
    def is_over_credit_limit(self) -> bool:
        return self.credit_limit is not None and self.balance > self.credit_limit

    @property
    def has_debt(self) -> bool:
        return self.balance > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "nexoId": self.erp_id,
            "balance": _decimal_out(self.balance),
            "creditLimit": _decimal_out(self.credit_limit),
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "CustomerBalance":
        data = dict(payload or {})
        return CustomerBalance(
            erp_id=str(_first(data, "nexoId", "erp_id") or ""),
            balance=_safe_decimal(data.get("balance")),
            credit_limit=_safe_decimal(_first(data, "creditLimit", "credit_limit"), None),
            updated_at=str(_first(data, "updatedAt", "updated_at") or _iso_now()),
        )


@dataclass
class OrderLine:
    product_code: str
    quantity: Decimal
    net_price: Decimal
    product_name: str = ""
    id: int | None = None
    product_id: int | None = None
    gross_price: Decimal | None = None
    vat_rate: Decimal | None = None
    discount: Decimal | None = None
    notes: str | None = None
    total: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "productId": self.product_id,
            "productCode": self.product_code,
            "productName": self.product_name,
            "quantity": _decimal_out(self.quantity),
            "priceNetto": _decimal_out(self.net_price),
            "priceBrutto": _decimal_out(self.gross_price),
            "vatRate": _decimal_out(self.vat_rate),
            "discount": _decimal_out(self.discount),
            "notes": self.notes,
            "total": _decimal_out(self.total),
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "OrderLine":
        data = dict(payload or {})
        return OrderLine(
            id=_safe_int(data.get("id")),
            product_id=_safe_int(_first(data, "productId", "product_id")),
            product_code=str(_first(data, "productCode", "product_code") or ""),
            product_name=str(_first(data, "productName", "product_name") or ""),
            quantity=_safe_decimal(data.get("quantity")),
            net_price=_safe_decimal(_first(data, "priceNetto", "net_price")),
            gross_price=_safe_decimal(_first(data, "priceBrutto", "gross_price"), None),
            vat_rate=_safe_decimal(_first(data, "vatRate", "vat_rate"), None),
            discount=_safe_decimal(data.get("discount"), None),
            notes=_safe_str(data.get("notes")),
            total=_safe_decimal(data.get("total"), None),
        )


@dataclass
class Order:
    """A cloud order as fetched for processing.

    Only ``status`` and ``erp_document_id`` change after the fetch; every
    other field is treated as read-only by the bridge.
    """

    id: int
    status: str = ORDER_STATUS_PENDING
    lines: list[OrderLine] = field(default_factory=list)
    customer: Customer | None = None
    customer_id: int | None = None
    client_id: int | None = None
    salesman_id: int | None = None
    order_number: str | None = None
    order_date: str | None = None
    notes: str | None = None
    total_net: Decimal = Decimal("0")
    total_gross: Decimal | None = None
    erp_document_id: str | None = None

    @property
    def customer_name(self) -> str:
        if self.customer is not None and self.customer.name:
            return self.customer.name
        return "Unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "salesmanId": self.salesman_id,
            "customerId": self.customer_id,
            "orderNumber": self.order_number,
            "nexoDocId": self.erp_document_id,
            "orderDate": self.order_date,
            "status": self.status,
            "notes": self.notes,
            "totalNetto": _decimal_out(self.total_net),
            "totalBrutto": _decimal_out(self.total_gross),
            "items": [line.to_dict() for line in self.lines],
            "customer": self.customer.to_dict() if self.customer is not None else None,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "Order":
        data = dict(payload or {})
        order_id = _safe_int(data.get("id"))
        if order_id is None:
            raise ValueError("order payload without a numeric id")
        items_raw = _first(data, "items", "lines")
        lines: list[OrderLine] = []
        if isinstance(items_raw, list):
            for item in items_raw:
                if isinstance(item, dict):
                    lines.append(OrderLine.from_dict(item))
        customer_raw = data.get("customer")
        return Order(
            id=order_id,
            status=normalize_status(data.get("status")),
            lines=lines,
            customer=Customer.from_dict(customer_raw) if isinstance(customer_raw, dict) else None,
            customer_id=_safe_int(_first(data, "customerId", "customer_id")),
            client_id=_safe_int(_first(data, "clientId", "client_id")),
            salesman_id=_safe_int(_first(data, "salesmanId", "salesman_id")),
            order_number=_safe_str(_first(data, "orderNumber", "order_number")),
            order_date=_safe_str(_first(data, "orderDate", "order_date")),
            notes=_safe_str(data.get("notes")),
            total_net=_safe_decimal(_first(data, "totalNetto", "total_net")),
            total_gross=_safe_decimal(_first(data, "totalBrutto", "total_gross"), None),
            erp_document_id=_safe_str(_first(data, "nexoDocId", "erp_document_id")),
        )


@dataclass
class DocumentResult:
    success: bool
    order_id: int | None = None
    document_id: str | None = None
    document_number: str | None = None
    error: str | None = None
    retryable: bool = False
    cancelled: bool = False
    attempts: int = 0

    @staticmethod
    def succeeded(order_id: int | None, document_id: str, document_number: str | None = None) -> "DocumentResult":
        return DocumentResult(
            success=True,
            order_id=order_id,
            document_id=document_id,
            document_number=document_number,
        )

    @staticmethod
    def failed(order_id: int | None, error: str, *, retryable: bool = False) -> "DocumentResult":
        return DocumentResult(success=False, order_id=order_id, error=error, retryable=retryable)

    @staticmethod
    def aborted(order_id: int | None, attempts: int, error: str | None = None) -> "DocumentResult":
        return DocumentResult(
            success=False,
            order_id=order_id,
            error=error or "cancelled",
            cancelled=True,
            attempts=attempts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "order_id": self.order_id,
            "document_id": self.document_id,
            "document_number": self.document_number,
            "error": self.error,
            "retryable": self.retryable,
            "cancelled": self.cancelled,
            "attempts": self.attempts,
        }


def validate_order(order: Order) -> list[str]:
    errors: list[str] = []
    if not order.lines:
        errors.append("order_has_no_lines")
    for line in order.lines:
        if line.quantity is None or line.quantity <= 0:
            errors.append("order_line_invalid_quantity")
            break
    return errors
