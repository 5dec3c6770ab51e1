from __future__ import annotations

import unittest
from datetime import datetime

from bridge.contexts.erp.infrastructure.simulator_gateway import SimulatorErpGateway
from bridge.contexts.orders.domain.models import DocumentResult
from bridge.errors import ErpGatewayError
from tests.helpers.fakes import make_order


def _fixed_now() -> datetime:
    return datetime(2026, 3, 14, 9, 30, 0)


class SimulatorErpGatewayTest(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = SimulatorErpGateway(seed=42, now=_fixed_now)
        self.gateway.connect()

    def test_document_ids_follow_production_shape(self) -> None:
        result = self.gateway.create_document(make_order(42))

        self.assertTrue(result.success)
        self.assertEqual(result.document_id, "NEXO-42-20260314093000")
        self.assertEqual(result.document_number, "ZK/2026/00042")

    def test_invalid_orders_are_rejected_without_retry_flag(self) -> None:
        result = self.gateway.create_document(make_order(43, quantity="0"))
        self.assertFalse(result.success)
        self.assertFalse(result.retryable)
        self.assertIn("quantity", result.error)

        empty = self.gateway.create_document(make_order(44, lines=0))
        self.assertIn("no lines", empty.error)

    def test_scripted_outcomes_take_precedence(self) -> None:
        self.gateway.script(45, TimeoutError("ERP timed out"), DocumentResult.failed(45, "busy", retryable=True))

        with self.assertRaises(TimeoutError):
            self.gateway.create_document(make_order(45))
        self.assertTrue(self.gateway.create_document(make_order(45)).retryable)
        self.assertTrue(self.gateway.create_document(make_order(45)).success)
        self.assertEqual(self.gateway.create_calls, 3)

    def test_failure_buckets_are_deterministic(self) -> None:
        first = SimulatorErpGateway(seed=7, transient_failure_percent=30, rejection_percent=10, now=_fixed_now)
        second = SimulatorErpGateway(seed=7, transient_failure_percent=30, rejection_percent=10, now=_fixed_now)
        first.connect()
        second.connect()

        outcomes_a = [first.create_document(make_order(idx)).success for idx in range(1, 60)]
        outcomes_b = [second.create_document(make_order(idx)).success for idx in range(1, 60)]

        self.assertEqual(outcomes_a, outcomes_b)
        self.assertIn(False, outcomes_a)
        self.assertIn(True, outcomes_a)

    def test_disconnected_gateway_raises(self) -> None:
        self.gateway.drop_connection()
        with self.assertRaises(ErpGatewayError):
            self.gateway.create_document(make_order(46))
        with self.assertRaises(ErpGatewayError):
            self.gateway.fetch_products()

    def test_refused_connects(self) -> None:
        gateway = SimulatorErpGateway()
        gateway.fail_next_connects(1)
        self.assertFalse(gateway.connect())
        self.assertTrue(gateway.connect())

    def test_catalog_defaults(self) -> None:
        self.assertEqual(len(self.gateway.fetch_products()), 3)
        self.assertEqual(len(self.gateway.fetch_customers()), 2)
        self.assertTrue(all(balance.erp_id for balance in self.gateway.fetch_balances()))


if __name__ == "__main__":
    unittest.main()
