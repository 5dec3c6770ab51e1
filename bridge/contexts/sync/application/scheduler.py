from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Sequence

from bridge.errors import failure_message
from bridge.observability import observe_sync_run


TASK_ORDERS = "orders"
TASK_PRODUCTS = "products"
TASK_CUSTOMERS = "customers"
TASK_BALANCES = "balances"


@dataclass
class SyncCursor:
    task: str
    interval_seconds: float
    last_run_at: float | None = None

    def is_due(self, now: float) -> bool:
        if self.last_run_at is None:
            return True
        return (now - self.last_run_at) >= self.interval_seconds

    def stamp(self, now: float) -> None:
        self.last_run_at = now

    def age(self, now: float) -> float | None:
        if self.last_run_at is None:
            return None
        return max(0.0, now - self.last_run_at)


@dataclass
class SyncResult:
    task: str
    success: bool
    fetched: int = 0
    pushed: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "task": self.task,
            "success": self.success,
            "fetched": self.fetched,
            "pushed": self.pushed,
            "error": self.error,
        }


@dataclass
class PeriodicTask:
    name: str
    interval_seconds: float
    run: Callable[[], SyncResult]
    enabled: bool = True


def build_cursors(tasks: Iterable[PeriodicTask]) -> Dict[str, SyncCursor]:
    return {task.name: SyncCursor(task=task.name, interval_seconds=task.interval_seconds) for task in tasks}


class SyncScheduler:
    """Decides which work is due on a tick and runs the periodic part of it.

    Cursors are owned by the caller and passed in on every call. Order
    processing is due on every tick; periodic tasks follow their cursor.
    """

    def __init__(
        self,
        tasks: Sequence[PeriodicTask],
        *,
        orders_enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._tasks: Dict[str, PeriodicTask] = {}
        for task in tasks:
            if task.name == TASK_ORDERS:
                raise ValueError("order processing is not a periodic task")
            self._tasks[task.name] = task
        self.orders_enabled = bool(orders_enabled)
        self._clock = clock
        self._logger = logger or logging.getLogger("bridge.scheduler")

    @property
    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks.values())

    def now(self) -> float:
        return self._clock()

    def due_tasks(self, cursors: Mapping[str, SyncCursor], now: float | None = None) -> List[str]:
        current = self.now() if now is None else now
        due: List[str] = []
        if self.orders_enabled:
            due.append(TASK_ORDERS)
        for name, task in self._tasks.items():
            if not task.enabled:
                continue
            cursor = cursors.get(name)
            if cursor is None or cursor.is_due(current):
                due.append(name)
        return due

    def run_periodic(
        self,
        due: Sequence[str],
        cursors: Dict[str, SyncCursor],
        now: float | None = None,
        *,
        should_stop: Callable[[], bool] | None = None,
    ) -> List[SyncResult]:
        results: List[SyncResult] = []
        for name in due:
            task = self._tasks.get(name)
            if task is None:
                continue
            if should_stop is not None and should_stop():
                break
            result = self._run_task(task)
            cursor = cursors.get(name)
            if cursor is None:
                cursor = SyncCursor(task=name, interval_seconds=task.interval_seconds)
                cursors[name] = cursor
            cursor.stamp(self.now() if now is None else now)
            results.append(result)
        return results

    def _run_task(self, task: PeriodicTask) -> SyncResult:
        self._logger.info("sync_task_started", extra={"task": task.name})
        try:
            result = task.run()
        except Exception as exc:  # noqa: BLE001 - a failing task must not block the others
            self._logger.exception("sync_task_error", extra={"task": task.name})
            result = SyncResult(task=task.name, success=False, error=failure_message(exc))

        observe_sync_run(task.name, "success" if result.success else "failure", result.pushed)
        log_method = self._logger.info if result.success else self._logger.warning
        log_method(
            "sync_task_finished",
            extra={
                "task": task.name,
                "success": result.success,
                "fetched": result.fetched,
                "pushed": result.pushed,
                "error": result.error,
            },
        )
        return result
