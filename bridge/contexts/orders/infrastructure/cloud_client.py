from __future__ import annotations

import json
import logging
import ssl
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, List, Mapping, Sequence

from bridge.contexts.orders.domain.models import Customer, CustomerBalance, Order, Product
from bridge.contexts.orders.domain.source import RemoteOrderSource
from bridge.errors import ConnectivityError, FatalRemoteError, TransientRemoteError, is_retryable_http_status


API_KEY_HEADER = "X-Bridge-Api-Key"


class CloudApiOrderSource(RemoteOrderSource):
    """HTTP/JSON binding of the order source against the cloud ``/bridge`` API.

    Reads raise on failure so the orchestrator can tell "no orders" from
    "could not ask". Writes (status updates, sync pushes) report success as a
    boolean and only log what went wrong.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        client_id: str | int | None = None,
        timeout_seconds: float = 30,
        verify_ssl: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        if not str(base_url or "").strip():
            raise ValueError("base_url is required")
        self.base_url = str(base_url).strip().rstrip("/")
        self.api_key = str(api_key or "")
        self.client_id = str(client_id or "").strip()
        self.timeout_seconds = float(timeout_seconds)
        self.verify_ssl = bool(verify_ssl)
        self._logger = logger or logging.getLogger("bridge.cloud_api")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "CloudApiOrderSource":
        return cls(
            str(config.get("CLOUD_API_BASE_URL") or ""),
            str(config.get("CLOUD_API_KEY") or ""),
            client_id=config.get("CLOUD_API_CLIENT_ID"),
            timeout_seconds=float(config.get("CLOUD_API_TIMEOUT_SECONDS") or 30),
            verify_ssl=bool(config.get("CLOUD_API_VERIFY_SSL", True)),
        )

    def fetch_pending(self) -> List[Order]:
        query = urllib.parse.urlencode({"client_id": self.client_id})
        payload = self._request_json("GET", f"/bridge/orders/pending?{query}")
        orders: List[Order] = []
        for item in _normalize_records(payload):
            try:
                orders.append(Order.from_dict(item))
            except ValueError:
                self._logger.warning("cloud_order_payload_invalid", extra={"payload_id": item.get("id")})
        self._logger.info("cloud_pending_orders_fetched", extra={"count": len(orders), "client_id": self.client_id})
        return orders

    def get_order(self, order_id: int) -> Order | None:
        try:
            payload = self._request_json("GET", f"/bridge/orders/{int(order_id)}")
        except FatalRemoteError:
            return None
        if not isinstance(payload, dict) or not payload:
            return None
        return Order.from_dict(payload)

    def update_status(
        self,
        order_id: int,
        status: str,
        document_ref: str | None = None,
        error: str | None = None,
    ) -> bool:
        body = {"status": status, "nexoDocId": document_ref, "errorMessage": error}
        try:
            self._request_json("PATCH", f"/bridge/orders/{int(order_id)}/status", payload=body)
        except (TransientRemoteError, FatalRemoteError) as exc:
            self._logger.warning(
                "cloud_status_update_failed",
                extra={"order_id": order_id, "status": status, "error": exc.details, "code": exc.code},
            )
            return False
        self._logger.info("cloud_status_updated", extra={"order_id": order_id, "status": status})
        return True

    def push_products(self, products: Sequence[Product]) -> bool:
        return self._push("products", [product.to_dict() for product in products])

    def push_customers(self, customers: Sequence[Customer]) -> bool:
        return self._push("customers", [customer.to_dict() for customer in customers])

    def push_balances(self, balances: Sequence[CustomerBalance]) -> bool:
        return self._push("balances", [balance.to_dict() for balance in balances])

    def health_check(self) -> bool:
        try:
            self._request_json("GET", "/bridge/health")
        except (TransientRemoteError, FatalRemoteError):
            return False
        return True

    def _push(self, kind: str, items: list[dict]) -> bool:
        self._logger.info("cloud_sync_push", extra={"kind": kind, "count": len(items), "client_id": self.client_id})
        try:
            self._request_json("POST", f"/bridge/sync/{kind}", payload={"client_id": self.client_id, kind: items})
        except (TransientRemoteError, FatalRemoteError) as exc:
            self._logger.warning(
                "cloud_sync_push_failed",
                extra={"kind": kind, "error": exc.details, "code": exc.code},
            )
            return False
        return True

    def _request_json(self, method: str, path: str, payload: dict | None = None) -> object:
        headers = {"Accept": "application/json", API_KEY_HEADER: self.api_key}
        data = None
        if payload is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")

        url = f"{self.base_url}/{path.lstrip('/')}"
        request = urllib.request.Request(url, data=data, headers=headers, method=method.upper())

        context = None
        if not self.verify_ssl:
            context = ssl._create_unverified_context()

        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds, context=context) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            details = f"Cloud API HTTP {exc.code}: {error_body[:200]}".strip()
            if is_retryable_http_status(int(exc.code)):
                raise TransientRemoteError(details, payload={"http_status": exc.code}) from exc
            raise FatalRemoteError(details, payload={"http_status": exc.code}) from exc
        except urllib.error.URLError as exc:
            raise ConnectivityError(f"Cloud API connection error: {exc.reason}") from exc
        except (TimeoutError, ConnectionError) as exc:
            raise ConnectivityError(f"Cloud API connection error: {exc}") from exc

        if not body:
            return {}
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise FatalRemoteError("Cloud API returned invalid JSON.") from exc


def _normalize_records(payload: object) -> List[dict]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        items = payload.get("items") or payload.get("data") or payload.get("orders") or []
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]
    return []
