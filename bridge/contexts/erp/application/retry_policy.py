from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from bridge.contexts.orders.domain.models import DocumentResult
from bridge.errors import FATAL, RETRYABLE, classify_failure, failure_message
from bridge.observability import observe_document_attempt, observe_retry


DEFAULT_BACKOFF_SCHEDULE_SECONDS = (2.0, 5.0, 10.0)
DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class RetryState:
    attempt: int = 0
    last_classification: str | None = None
    last_error: str | None = None

    def record_failure(self, classification: str, message: str) -> None:
        self.attempt += 1
        self.last_classification = classification
        self.last_error = message


def normalize_schedule(schedule: Sequence[float] | None) -> tuple[float, ...]:
    if not schedule:
        return DEFAULT_BACKOFF_SCHEDULE_SECONDS
    normalized = []
    for value in schedule:
        try:
            normalized.append(max(0.0, float(value)))
        except (TypeError, ValueError):
            continue
    return tuple(normalized) or DEFAULT_BACKOFF_SCHEDULE_SECONDS


def backoff_delay(attempt: int, schedule: Sequence[float]) -> float:
    """Delay to wait after the failed 0-based ``attempt``.

    The last schedule entry is reused for attempts beyond its length.
    """
    index = min(max(0, int(attempt)), len(schedule) - 1)
    return float(schedule[index])


class RetryPolicy:
    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_schedule: Sequence[float] | None = None,
        stop_event: threading.Event | None = None,
        wait: Callable[[float], bool] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_attempts = max(1, int(max_attempts or 1))
        self.backoff_schedule = normalize_schedule(backoff_schedule)
        self._stop_event = stop_event or threading.Event()
        self._wait = wait or self._stop_event.wait
        self._logger = logger or logging.getLogger("bridge.retry")

    def is_cancelled(self) -> bool:
        return self._stop_event.is_set()

    def attempt(
        self,
        operation: Callable[[], DocumentResult],
        max_attempts: int | None = None,
        backoff_schedule: Sequence[float] | None = None,
        *,
        order_id: int | None = None,
    ) -> DocumentResult:
        limit = max(1, int(max_attempts or self.max_attempts))
        schedule = normalize_schedule(backoff_schedule) if backoff_schedule is not None else self.backoff_schedule
        state = RetryState()

        while True:
            if self.is_cancelled():
                return self._cancelled(order_id, state)

            started = time.perf_counter()
            try:
                result = operation()
            except Exception as exc:  # noqa: BLE001 - every failure becomes a result value
                classification = classify_failure(exc)
                message = failure_message(exc)
            else:
                if result.success:
                    observe_document_attempt("success", _elapsed_ms(started))
                    result.attempts = state.attempt + 1
                    if result.order_id is None:
                        result.order_id = order_id
                    return result
                classification = RETRYABLE if result.retryable else FATAL
                message = str(result.error or "").strip() or "ERP returned an unsuccessful result without details."

            observe_document_attempt(classification, _elapsed_ms(started))
            state.record_failure(classification, message)

            if classification == FATAL:
                self._logger.warning(
                    "erp_attempt_fatal",
                    extra={"order_id": order_id, "attempt": state.attempt, "error": message},
                )
                return self._failed(order_id, state)

            if state.attempt >= limit:
                self._logger.warning(
                    "erp_attempts_exhausted",
                    extra={"order_id": order_id, "attempts": state.attempt, "error": message},
                )
                return self._failed(order_id, state)

            delay = backoff_delay(state.attempt - 1, schedule)
            observe_retry(delay)
            self._logger.info(
                "erp_retry_scheduled",
                extra={
                    "order_id": order_id,
                    "attempt": state.attempt,
                    "max_attempts": limit,
                    "backoff_seconds": delay,
                    "error": message,
                },
            )
            if self._wait(delay) or self.is_cancelled():
                return self._cancelled(order_id, state)

    def _failed(self, order_id: int | None, state: RetryState) -> DocumentResult:
        return DocumentResult(
            success=False,
            order_id=order_id,
            error=state.last_error,
            retryable=state.last_classification == RETRYABLE,
            attempts=state.attempt,
        )

    def _cancelled(self, order_id: int | None, state: RetryState) -> DocumentResult:
        self._logger.info(
            "erp_retry_cancelled",
            extra={"order_id": order_id, "attempts": state.attempt},
        )
        return DocumentResult.aborted(order_id, state.attempt, state.last_error)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0
