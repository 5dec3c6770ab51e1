from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from bridge.contexts.erp.application.retry_policy import RetryPolicy
from bridge.contexts.erp.domain.gateway import ErpGateway
from bridge.contexts.orders.domain.models import (
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_FAILED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PROCESSING,
    DocumentResult,
    Order,
    is_terminal,
)
from bridge.contexts.orders.domain.source import RemoteOrderSource
from bridge.messages import error_message, with_details
from bridge.observability import observe_order_outcome, observe_status_update


ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    ORDER_STATUS_PENDING: frozenset({ORDER_STATUS_PROCESSING}),
    ORDER_STATUS_PROCESSING: frozenset({ORDER_STATUS_COMPLETED, ORDER_STATUS_FAILED}),
    ORDER_STATUS_COMPLETED: frozenset(),
    ORDER_STATUS_FAILED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    def __init__(self, order_id: int, from_status: str, to_status: str) -> None:
        super().__init__(f"order {order_id}: transition {from_status} -> {to_status} not allowed")
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status


@dataclass
class StatusNotification:
    status: str
    acknowledged: bool
    document_ref: str | None = None
    error: str | None = None


@dataclass
class LifecycleOutcome:
    order_id: int
    status: str
    result: DocumentResult | None = None
    notifications: list[StatusNotification] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def cancelled(self) -> bool:
        return bool(self.result is not None and self.result.cancelled)


def transition(order: Order, to_status: str) -> str:
    from_status = order.status
    if to_status not in ALLOWED_TRANSITIONS.get(from_status, frozenset()):
        raise InvalidTransitionError(order.id, from_status, to_status)
    order.status = to_status
    return from_status


class OrderLifecycle:
    """Drives one fetched order from ``pending`` to a terminal status.

    Every local state change is reported once to the remote source. Report
    failures are logged and never undo the local decision. A retry sequence
    aborted by cancellation leaves the order in ``processing`` without a
    terminal report, so the next poll can pick it up again.
    """

    def __init__(
        self,
        order_source: RemoteOrderSource,
        gateway: ErpGateway,
        retry_policy: RetryPolicy,
        *,
        max_attempts: int | None = None,
        backoff_schedule: Sequence[float] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._order_source = order_source
        self._gateway = gateway
        self._retry_policy = retry_policy
        self._max_attempts = max_attempts
        self._backoff_schedule = backoff_schedule
        self._logger = logger or logging.getLogger("bridge.lifecycle")

    def run(self, order: Order) -> LifecycleOutcome:
        outcome = LifecycleOutcome(order_id=order.id, status=order.status)
        self._logger.info(
            "order_processing_started",
            extra={"order_id": order.id, "customer_name": order.customer_name, "lines": len(order.lines)},
        )

        transition(order, ORDER_STATUS_PROCESSING)
        outcome.status = order.status
        outcome.notifications.append(self._notify(order.id, ORDER_STATUS_PROCESSING))

        try:
            result = self._retry_policy.attempt(
                lambda: self._gateway.create_document(order),
                self._max_attempts,
                self._backoff_schedule,
                order_id=order.id,
            )
        except Exception as exc:  # noqa: BLE001 - the order must still reach a terminal status
            self._logger.exception("order_processing_exception", extra={"order_id": order.id})
            result = DocumentResult.failed(order.id, with_details("order_processing_exception", str(exc)))
        outcome.result = result

        if result.cancelled:
            self._logger.warning(
                "order_processing_cancelled",
                extra={"order_id": order.id, "attempts": result.attempts},
            )
            observe_order_outcome("cancelled")
            return outcome

        if result.success:
            transition(order, ORDER_STATUS_COMPLETED)
            order.erp_document_id = result.document_id
            outcome.status = order.status
            outcome.notifications.append(
                self._notify(order.id, ORDER_STATUS_COMPLETED, document_ref=result.document_id)
            )
            self._logger.info(
                "order_processing_completed",
                extra={
                    "order_id": order.id,
                    "document_id": result.document_id,
                    "document_number": result.document_number,
                    "attempts": result.attempts,
                },
            )
            observe_order_outcome(ORDER_STATUS_COMPLETED)
            return outcome

        message = str(result.error or "").strip() or error_message("erp_document_rejected")
        transition(order, ORDER_STATUS_FAILED)
        outcome.status = order.status
        outcome.notifications.append(self._notify(order.id, ORDER_STATUS_FAILED, error=message))
        self._logger.warning(
            "order_processing_failed",
            extra={"order_id": order.id, "error": message, "attempts": result.attempts},
        )
        observe_order_outcome(ORDER_STATUS_FAILED)
        return outcome

    def _notify(
        self,
        order_id: int,
        status: str,
        *,
        document_ref: str | None = None,
        error: str | None = None,
    ) -> StatusNotification:
        try:
            acknowledged = bool(
                self._order_source.update_status(order_id, status, document_ref=document_ref, error=error)
            )
        except Exception:  # noqa: BLE001 - status reporting is best-effort
            self._logger.exception(
                "order_status_update_error",
                extra={"order_id": order_id, "status": status},
            )
            acknowledged = False
        if not acknowledged:
            self._logger.warning(
                "order_status_update_not_acknowledged",
                extra={"order_id": order_id, "status": status},
            )
        observe_status_update(status, acknowledged)
        return StatusNotification(status=status, acknowledged=acknowledged, document_ref=document_ref, error=error)
