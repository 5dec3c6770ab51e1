from __future__ import annotations

import threading
import time
import unittest

from bridge.contexts.orders.domain.models import Order
from bridge.contexts.sync.application.orchestrator import build_orchestrator
from bridge.errors import ErpGatewayError
from bridge.observability import metrics_snapshot, reset_metrics_for_tests
from bridge.settings import BridgeSettings
from tests.helpers.fakes import FakeGateway, FakeOrderSource, ManualClock, RecordingWait, make_order


class OrchestratorTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self.clock = ManualClock(start=5000.0)
        self.stop_event = threading.Event()
        self.wait = RecordingWait(self.stop_event)
        self.settings = BridgeSettings(poll_interval_seconds=30.0)

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def _build(self, source: FakeOrderSource, gateway: FakeGateway, settings: BridgeSettings | None = None):
        return build_orchestrator(
            settings or self.settings,
            source,
            gateway,
            stop_event=self.stop_event,
            clock=self.clock,
            wait=self.wait,
        )

    def test_tick_processes_orders_then_due_sync_tasks(self) -> None:
        source = FakeOrderSource([[make_order(1), make_order(2)]])
        gateway = FakeGateway()
        orchestrator = self._build(source, gateway)

        summary = orchestrator.run_once()

        self.assertEqual(gateway.calls, [1, 2])
        self.assertEqual(summary.orders_completed, 2)
        self.assertEqual([result.task for result in summary.sync_results], ["products", "customers"])
        self.assertEqual(len(source.pushed_products), 1)
        self.assertTrue(summary.tick_id.startswith("tick-"))

    def test_periodic_tasks_wait_for_their_interval(self) -> None:
        source = FakeOrderSource()
        orchestrator = self._build(source, FakeGateway())

        orchestrator.run_once()
        self.clock.advance(3599)
        second = orchestrator.run_once()
        self.clock.advance(1)
        third = orchestrator.run_once()

        self.assertEqual(second.sync_results, [])
        self.assertEqual([result.task for result in third.sync_results], ["products", "customers"])
        self.assertEqual(source.fetch_calls, 3)

    def test_unhealthy_remote_skips_fetch(self) -> None:
        source = FakeOrderSource([[make_order(1)]], healthy=False)
        gateway = FakeGateway()
        summary = self._build(source, gateway).run_once()

        self.assertTrue(summary.remote_unavailable)
        self.assertEqual(source.fetch_calls, 0)
        self.assertEqual(gateway.calls, [])

    def test_duplicate_ids_in_batch_are_driven_once(self) -> None:
        source = FakeOrderSource([[make_order(7), make_order(7), make_order(8)]])
        gateway = FakeGateway()
        summary = self._build(source, gateway).run_once()

        self.assertEqual(gateway.calls, [7, 8])
        self.assertEqual(summary.orders_skipped, 1)
        self.assertEqual([update[1] for update in source.updates_for(7)], ["processing", "completed"])

    def test_orders_not_pending_are_skipped(self) -> None:
        source = FakeOrderSource([[make_order(9, status="completed"), make_order(10)]])
        gateway = FakeGateway()
        summary = self._build(source, gateway).run_once()

        self.assertEqual(gateway.calls, [10])
        self.assertEqual(summary.orders_skipped, 1)
        self.assertEqual(source.updates_for(9), [])

    def test_unknown_remote_status_is_skipped(self) -> None:
        cancelled = Order.from_dict({"id": 11, "status": "cancelled", "items": [{"productCode": "P-0001", "quantity": 1}]})
        source = FakeOrderSource([[cancelled]])
        gateway = FakeGateway()
        summary = self._build(source, gateway).run_once()

        self.assertEqual(gateway.calls, [])
        self.assertEqual(summary.orders_skipped, 1)
        self.assertEqual(source.updates_for(11), [])

    def test_fetch_exception_is_contained_and_sync_still_runs(self) -> None:
        source = FakeOrderSource()
        source.fetch_error = RuntimeError("cloud exploded")
        orchestrator = self._build(source, FakeGateway())

        summary = orchestrator.run_once()
        orchestrator.run_once()

        self.assertEqual(len(summary.errors), 1)
        self.assertIn("cloud exploded", summary.errors[0])
        self.assertEqual(len(summary.sync_results), 2)
        self.assertEqual(metrics_snapshot()["ticks_total"], 2)
        self.assertEqual(metrics_snapshot()["tick_errors_total"], 2)

    def test_lost_connection_is_reestablished_at_tick_start(self) -> None:
        gateway = FakeGateway(connected=False)
        orchestrator = self._build(FakeOrderSource(), gateway)

        summary = orchestrator.run_once()

        self.assertEqual(gateway.connect_calls, 1)
        self.assertTrue(summary.erp_connected)
        self.assertTrue(orchestrator.snapshot()["erp_connected"])

    def test_failed_reconnect_is_retried_next_tick(self) -> None:
        gateway = FakeGateway(connected=False)
        gateway.connect_results.extend([False, True])
        orchestrator = self._build(FakeOrderSource(), gateway)

        first = orchestrator.run_once()
        second = orchestrator.run_once()

        self.assertFalse(first.erp_connected)
        self.assertTrue(second.erp_connected)
        self.assertEqual(gateway.connect_calls, 2)
        self.assertEqual(metrics_snapshot()["erp_reconnects_total"], {"failure": 1, "success": 1})

    def test_orders_wait_while_erp_is_unreachable(self) -> None:
        source = FakeOrderSource([[make_order(1)]])
        gateway = FakeGateway([ErpGatewayError("Not connected to the ERP backend.", code="not_connected")], connected=False)
        gateway.connect_results.extend([False, True])
        orchestrator = self._build(source, gateway)

        first = orchestrator.run_once()

        self.assertTrue(first.erp_unavailable)
        self.assertEqual(source.fetch_calls, 0)
        self.assertEqual(source.updates, [])
        self.assertEqual(gateway.calls, [])

        gateway.outcomes.clear()
        second = orchestrator.run_once()

        self.assertFalse(second.erp_unavailable)
        self.assertEqual(second.orders_completed, 1)
        self.assertEqual([update[1] for update in source.updates_for(1)], ["processing", "completed"])

    def test_stop_between_orders(self) -> None:
        stop_event = self.stop_event

        class _StoppingSource(FakeOrderSource):
            def update_status(self, order_id, status, document_ref=None, error=None):
                if status == "completed":
                    stop_event.set()
                return super().update_status(order_id, status, document_ref, error)

        source = _StoppingSource([[make_order(1), make_order(2)]])
        gateway = FakeGateway()
        summary = self._build(source, gateway).run_once()

        self.assertEqual(gateway.calls, [1])
        self.assertEqual(summary.sync_results, [])
        self.assertEqual(source.updates_for(2), [])

    def test_run_connects_and_disconnects(self) -> None:
        gateway = FakeGateway(connected=False)
        orchestrator = self._build(FakeOrderSource(), gateway)

        orchestrator.run(max_ticks=1)

        self.assertEqual(gateway.connect_calls, 1)
        self.assertEqual(gateway.disconnect_calls, 1)
        self.assertFalse(orchestrator.snapshot()["erp_connected"])

    def test_stop_interrupts_inter_tick_sleep(self) -> None:
        settings = BridgeSettings(poll_interval_seconds=60.0)
        orchestrator = self._build(FakeOrderSource(), FakeGateway(), settings)
        worker = threading.Thread(target=orchestrator.run)
        worker.start()

        deadline = time.monotonic() + 5
        while orchestrator.snapshot()["ticks"] < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        orchestrator.stop()
        worker.join(timeout=5)

        self.assertFalse(worker.is_alive())
        self.assertEqual(orchestrator.snapshot()["ticks"], 1)
        self.assertTrue(orchestrator.snapshot()["stopping"])

    def test_snapshot_reports_cursor_ages(self) -> None:
        orchestrator = self._build(FakeOrderSource(), FakeGateway())
        self.assertIsNone(orchestrator.snapshot()["cursors"]["products"]["last_run_age_seconds"])

        orchestrator.run_once()
        self.clock.advance(120)
        cursors = orchestrator.snapshot()["cursors"]

        self.assertEqual(cursors["products"]["last_run_age_seconds"], 120)
        self.assertFalse(cursors["products"]["due"])
        self.assertIn("balances", cursors)


if __name__ == "__main__":
    unittest.main()
