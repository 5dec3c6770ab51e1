from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any, List, Mapping

from bridge.contexts.erp.domain.gateway import ErpGateway
from bridge.contexts.orders.domain.models import Customer, CustomerBalance, DocumentResult, Order, Product
from bridge.errors import ErpGatewayError, is_retryable_http_status
from bridge.messages import error_message


def build_document_payload(order: Order, *, document_type: str, warehouse: str) -> dict:
    customer = order.customer
    return {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "documentType": document_type,
        "warehouse": warehouse,
        "customerId": order.customer_id,
        "customerErpId": customer.erp_id if customer is not None else None,
        "customerName": order.customer_name,
        "notes": order.notes,
        "lines": [
            {
                "productCode": line.product_code,
                "quantity": float(line.quantity),
                "priceNetto": float(line.net_price),
                "discount": float(line.discount) if line.discount is not None else None,
            }
            for line in order.lines
        ],
    }


class ProxyErpGateway(ErpGateway):
    """ERP access through the on-premise document proxy over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 60,
        document_type: str = "ZK",
        warehouse: str = "MAG",
        logger: logging.Logger | None = None,
    ) -> None:
        if not str(base_url or "").strip():
            raise ValueError("base_url is required")
        self.base_url = str(base_url).strip().rstrip("/")
        self.timeout_seconds = float(timeout_seconds)
        self.document_type = document_type
        self.warehouse = warehouse
        self._logger = logger or logging.getLogger("bridge.erp.proxy")
        self._connected = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "ProxyErpGateway":
        return cls(
            str(config.get("ERP_PROXY_URL") or ""),
            timeout_seconds=float(config.get("ERP_PROXY_TIMEOUT_SECONDS") or 60),
            document_type=str(config.get("ERP_DOCUMENT_TYPE") or "ZK"),
            warehouse=str(config.get("ERP_WAREHOUSE") or "MAG"),
        )

    def connect(self) -> bool:
        try:
            self._request_json("GET", "/health")
        except ErpGatewayError as exc:
            self._logger.warning("erp_proxy_connect_failed", extra={"error": str(exc)})
            self._connected = False
            return False
        self._connected = True
        return True

    def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def create_document(self, order: Order) -> DocumentResult:
        payload = build_document_payload(order, document_type=self.document_type, warehouse=self.warehouse)
        try:
            response = self._request_json("POST", "/documents", payload=payload)
        except ErpGatewayError as exc:
            if exc.code == "connection_error":
                self._connected = False
            raise
        if not isinstance(response, dict):
            raise ErpGatewayError("ERP proxy returned a non-object response.", code="invalid_response")

        if not response.get("success", True):
            return DocumentResult.failed(
                order.id,
                str(response.get("error") or error_message("erp_document_rejected")),
                retryable=bool(response.get("retryable", False)),
            )

        document_id = response.get("documentId") or response.get("nexoDocId")
        if not document_id:
            raise ErpGatewayError("ERP proxy did not return a document id.", code="invalid_response")
        return DocumentResult.succeeded(order.id, str(document_id), response.get("documentNumber"))

    def fetch_products(self) -> List[Product]:
        return [Product.from_dict(item) for item in self._get_records("/products")]

    def fetch_customers(self) -> List[Customer]:
        return [Customer.from_dict(item) for item in self._get_records("/customers")]

    def fetch_balances(self) -> List[CustomerBalance]:
        return [CustomerBalance.from_dict(item) for item in self._get_records("/balances")]

    def _get_records(self, path: str) -> List[dict]:
        payload = self._request_json("GET", path)
        if isinstance(payload, dict):
            payload = payload.get("items") or payload.get("data") or []
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    def _request_json(self, method: str, path: str, payload: dict | None = None) -> object:
        headers = {"Accept": "application/json"}
        data = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")

        url = f"{self.base_url}/{path.lstrip('/')}"
        request = urllib.request.Request(url, data=data, headers=headers, method=method.upper())
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            raise ErpGatewayError(
                f"ERP proxy HTTP {exc.code}: {error_body[:200]}",
                code="http_error",
                definitive=not is_retryable_http_status(int(exc.code)),
                http_status=exc.code,
            ) from exc
        except urllib.error.URLError as exc:
            raise ErpGatewayError(f"ERP proxy connection error: {exc.reason}", code="connection_error") from exc
        except (TimeoutError, ConnectionError) as exc:
            raise ErpGatewayError(f"ERP proxy connection error: {exc}", code="connection_error") from exc

        if not body:
            return {}
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise ErpGatewayError("ERP proxy returned invalid JSON.", code="invalid_response") from exc
