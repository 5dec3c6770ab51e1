from __future__ import annotations

import json
import logging
import threading
import unittest

from bridge import create_app
from bridge.config import Config
from bridge.contexts.sync.application.orchestrator import build_orchestrator
from bridge.observability import JsonLogFormatter, bind_tick_id, observe_order_outcome, reset_metrics_for_tests
from bridge.settings import BridgeSettings
from tests.helpers.fakes import FakeGateway, FakeOrderSource, ManualClock, RecordingWait, make_order


class _TestConfig(Config):
    TESTING = True
    LOG_JSON = False
    BRIDGE_ENV = "test"


class HealthRoutesTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        stop_event = threading.Event()
        self.gateway = FakeGateway()
        self.orchestrator = build_orchestrator(
            BridgeSettings(),
            FakeOrderSource([[make_order(42)]]),
            self.gateway,
            stop_event=stop_event,
            clock=ManualClock(),
            wait=RecordingWait(stop_event),
        )
        self.app = create_app(_TestConfig, orchestrator=self.orchestrator)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_health_reports_worker_snapshot(self) -> None:
        self.orchestrator.run_once()

        response = self.client.get("/health")
        payload = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["worker"]["ticks"], 1)
        self.assertEqual(payload["worker"]["last_tick"]["orders_completed"], 1)
        self.assertEqual(payload["metrics"]["orders_total"], {"completed": 1})

    def test_health_is_degraded_without_erp_connection(self) -> None:
        self.gateway.connect_results.append(False)
        self.gateway.connected = False
        self.orchestrator.run_once()

        payload = self.client.get("/health").get_json()
        self.assertEqual(payload["status"], "degraded")

    def test_health_without_worker_is_idle(self) -> None:
        app = create_app(_TestConfig)
        payload = app.test_client().get("/health").get_json()
        self.assertEqual(payload["status"], "idle")
        self.assertIsNone(payload["worker"])

    def test_metrics_endpoint_exposes_prometheus_text(self) -> None:
        self.orchestrator.run_once()
        observe_order_outcome("failed")

        response = self.client.get("/metrics")
        body = response.get_data(as_text=True)

        self.assertEqual(response.status_code, 200)
        self.assertIn("text/plain", response.headers.get("Content-Type") or "")
        self.assertIn('bridge_orders_total{outcome="completed"} 1', body)
        self.assertIn('bridge_orders_total{outcome="failed"} 1', body)
        self.assertIn('erp_document_attempts_total{result="success"} 1', body)
        self.assertIn("bridge_ticks_total 1", body)
        self.assertIn("erp_connected 1", body)
        self.assertIn('bridge_sync_runs_total{result="success",task="products"} 1', body)

    def test_unexpected_errors_render_json(self) -> None:
        @self.app.route("/boom")
        def _boom():
            raise RuntimeError("kaput")

        self.app.config["PROPAGATE_EXCEPTIONS"] = False
        response = self.client.get("/boom")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()["error"]["code"], "unexpected_error")


class JsonLogFormatterTest(unittest.TestCase):
    def test_formatter_includes_tick_id_and_extras(self) -> None:
        record = logging.LogRecord("bridge.test", logging.INFO, __file__, 1, "order_processing_started", None, None)
        record.order_id = 42
        with bind_tick_id("tick-abc"):
            payload = json.loads(JsonLogFormatter().format(record))

        self.assertEqual(payload["message"], "order_processing_started")
        self.assertEqual(payload["tick_id"], "tick-abc")
        self.assertEqual(payload["order_id"], 42)
        self.assertEqual(payload["level"], "info")


if __name__ == "__main__":
    unittest.main()
