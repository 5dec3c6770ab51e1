from __future__ import annotations

import io
import json
import unittest
import urllib.error
from decimal import Decimal
from unittest import mock

from bridge.contexts.orders.domain.models import Product
from bridge.contexts.orders.infrastructure.cloud_client import API_KEY_HEADER, CloudApiOrderSource
from bridge.errors import ConnectivityError, FatalRemoteError, TransientRemoteError


def _response(payload: object) -> mock.MagicMock:
    body = json.dumps(payload).encode("utf-8") if payload is not None else b""
    response = mock.MagicMock()
    response.read.return_value = body
    response.__enter__.return_value = response
    return response


def _http_error(code: int, body: bytes = b"nope") -> urllib.error.HTTPError:
    return urllib.error.HTTPError("http://cloud/bridge", code, "error", {}, io.BytesIO(body))


class CloudApiOrderSourceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.source = CloudApiOrderSource("http://cloud.test/", "secret", client_id=3, timeout_seconds=5)

    def _patch_urlopen(self, *effects):
        patcher = mock.patch("urllib.request.urlopen", side_effect=list(effects))
        urlopen = patcher.start()
        self.addCleanup(patcher.stop)
        return urlopen

    def test_fetch_pending_parses_orders_and_sends_api_key(self) -> None:
        urlopen = self._patch_urlopen(
            _response(
                [
                    {"id": 42, "status": "pending", "items": [{"productCode": "P-1", "quantity": 2, "priceNetto": 5}]},
                    {"status": "pending"},
                ]
            )
        )

        orders = self.source.fetch_pending()

        self.assertEqual([order.id for order in orders], [42])
        request = urlopen.call_args.args[0]
        self.assertEqual(request.full_url, "http://cloud.test/bridge/orders/pending?client_id=3")
        self.assertEqual(request.get_method(), "GET")
        self.assertEqual(request.get_header(API_KEY_HEADER.capitalize()), "secret")
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 5.0)

    def test_fetch_pending_raises_on_transport_and_server_errors(self) -> None:
        self._patch_urlopen(urllib.error.URLError("refused"), _http_error(503), _http_error(401))

        with self.assertRaises(ConnectivityError):
            self.source.fetch_pending()
        with self.assertRaises(TransientRemoteError):
            self.source.fetch_pending()
        with self.assertRaises(FatalRemoteError):
            self.source.fetch_pending()

    def test_update_status_sends_patch_body(self) -> None:
        urlopen = self._patch_urlopen(_response(None))

        acknowledged = self.source.update_status(42, "completed", document_ref="NEXO-42-1")

        self.assertTrue(acknowledged)
        request = urlopen.call_args.args[0]
        self.assertEqual(request.get_method(), "PATCH")
        self.assertEqual(request.full_url, "http://cloud.test/bridge/orders/42/status")
        self.assertEqual(
            json.loads(request.data.decode("utf-8")),
            {"status": "completed", "nexoDocId": "NEXO-42-1", "errorMessage": None},
        )

    def test_update_status_failure_returns_false(self) -> None:
        self._patch_urlopen(_http_error(500), urllib.error.URLError("down"))
        self.assertFalse(self.source.update_status(42, "failed", error="rejected"))
        self.assertFalse(self.source.update_status(42, "failed", error="rejected"))

    def test_push_products_wraps_batch_with_client_id(self) -> None:
        urlopen = self._patch_urlopen(_response({"ok": True}))

        pushed = self.source.push_products([Product(code="P-1", name="Paper", net_price=Decimal("19.90"))])

        self.assertTrue(pushed)
        request = urlopen.call_args.args[0]
        self.assertEqual(request.full_url, "http://cloud.test/bridge/sync/products")
        body = json.loads(request.data.decode("utf-8"))
        self.assertEqual(body["client_id"], "3")
        self.assertEqual(body["products"][0]["code"], "P-1")
        self.assertEqual(body["products"][0]["priceNetto"], 19.9)

    def test_health_check(self) -> None:
        self._patch_urlopen(_response({"status": "ok"}), urllib.error.URLError("down"))
        self.assertTrue(self.source.health_check())
        self.assertFalse(self.source.health_check())

    def test_get_order_returns_none_when_missing(self) -> None:
        self._patch_urlopen(_http_error(404), _response({"id": 7, "status": "completed"}))
        self.assertIsNone(self.source.get_order(7))
        self.assertEqual(self.source.get_order(7).status, "completed")


if __name__ == "__main__":
    unittest.main()
