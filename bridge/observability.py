from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Dict


_DOCUMENT_ATTEMPT_BUCKETS_MS = (10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0, 30000.0)
_BACKOFF_BUCKETS_SECONDS = (1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)
_TICK_DURATION_BUCKETS_SECONDS = (0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)

_LOG_TICK_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_tick_id", default="")


def _normalize_tick_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_tick_id(tick_id: str | None) -> None:
    _LOG_TICK_ID_CTX.set(_normalize_tick_id(tick_id))


@contextlib.contextmanager
def bind_tick_id(tick_id: str | None):
    token = _LOG_TICK_ID_CTX.set(_normalize_tick_id(tick_id))
    try:
        yield _LOG_TICK_ID_CTX.get()
    finally:
        _LOG_TICK_ID_CTX.reset(token)


def current_tick_id(default: str | None = None) -> str:
    tick_id = str(_LOG_TICK_ID_CTX.get() or "").strip()
    if tick_id:
        return tick_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        record_tick_id = str(getattr(record, "tick_id", "") or "").strip()
        payload["tick_id"] = record_tick_id or current_tick_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value if _is_json_scalar(value) else str(value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"))


def _is_json_scalar(value: object) -> bool:
    return value is None or isinstance(value, (str, int, float, bool, list, dict))


def configure_json_logging(app) -> None:
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    if bool(app.config.get("LOG_JSON", True)):
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._orders_total: Dict[str, int] = {}
            self._status_updates_total: Dict[tuple[str, str], int] = {}
            self._document_attempts_total: Dict[str, int] = {}
            self._document_attempt_duration_ms = self._new_histogram_state(_DOCUMENT_ATTEMPT_BUCKETS_MS)
            self._retry_count = 0
            self._retry_backoff_seconds = self._new_histogram_state(_BACKOFF_BUCKETS_SECONDS)
            self._sync_runs_total: Dict[tuple[str, str], int] = {}
            self._sync_items_total: Dict[str, int] = {}
            self._ticks_total = 0
            self._tick_errors_total = 0
            self._tick_duration_seconds = self._new_histogram_state(_TICK_DURATION_BUCKETS_SECONDS)
            self._erp_reconnects_total: Dict[str, int] = {}

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "limits": limits,
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float) -> None:
        observed = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += observed
        for limit in state["limits"]:
            if observed <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    @staticmethod
    def _increment(counter: dict, key, amount: int = 1) -> None:
        counter[key] = int(counter.get(key, 0)) + max(0, int(amount))

    def observe_order_outcome(self, outcome: str) -> None:
        with self._lock:
            self._increment(self._orders_total, str(outcome or "unknown"))

    def observe_status_update(self, status: str, acknowledged: bool) -> None:
        with self._lock:
            self._increment(self._status_updates_total, (str(status), "ok" if acknowledged else "error"))

    def observe_document_attempt(self, classification: str, duration_ms: float) -> None:
        with self._lock:
            self._increment(self._document_attempts_total, str(classification or "unknown"))
            self._observe_histogram(self._document_attempt_duration_ms, duration_ms)

    def observe_retry(self, backoff_seconds: float) -> None:
        with self._lock:
            self._retry_count += 1
            self._observe_histogram(self._retry_backoff_seconds, backoff_seconds)

    def observe_sync_run(self, task: str, result: str, items: int = 0) -> None:
        with self._lock:
            self._increment(self._sync_runs_total, (str(task), str(result)))
            self._increment(self._sync_items_total, str(task), items)

    def observe_tick(self, duration_seconds: float, errors: int = 0) -> None:
        with self._lock:
            self._ticks_total += 1
            self._tick_errors_total += max(0, int(errors))
            self._observe_histogram(self._tick_duration_seconds, duration_seconds)

    def observe_erp_reconnect(self, result: str) -> None:
        with self._lock:
            self._increment(self._erp_reconnects_total, str(result))

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "orders_total": dict(self._orders_total),
                "status_updates_total": {
                    f"{status}:{result}": value for (status, result), value in self._status_updates_total.items()
                },
                "document_attempts_total": dict(self._document_attempts_total),
                "retry_count": self._retry_count,
                "sync_runs_total": {f"{task}:{result}": value for (task, result), value in self._sync_runs_total.items()},
                "sync_items_total": dict(self._sync_items_total),
                "ticks_total": self._ticks_total,
                "tick_errors_total": self._tick_errors_total,
                "erp_reconnects_total": dict(self._erp_reconnects_total),
            }

    def prometheus_snapshot(self) -> dict:
        with self._lock:
            return {
                "orders_total": sorted(self._orders_total.items()),
                "status_updates_total": sorted(self._status_updates_total.items()),
                "document_attempts_total": sorted(self._document_attempts_total.items()),
                "document_attempt_duration_ms": _copy_histogram(self._document_attempt_duration_ms),
                "retry_count": self._retry_count,
                "retry_backoff_seconds": _copy_histogram(self._retry_backoff_seconds),
                "sync_runs_total": sorted(self._sync_runs_total.items()),
                "sync_items_total": sorted(self._sync_items_total.items()),
                "ticks_total": self._ticks_total,
                "tick_errors_total": self._tick_errors_total,
                "tick_duration_seconds": _copy_histogram(self._tick_duration_seconds),
                "erp_reconnects_total": sorted(self._erp_reconnects_total.items()),
            }


def _copy_histogram(state: dict) -> dict:
    return {"count": state["count"], "sum": state["sum"], "buckets": dict(state["buckets"])}


_METRICS = MetricsRegistry()


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_order_outcome(outcome: str) -> None:
    _METRICS.observe_order_outcome(outcome)


def observe_status_update(status: str, acknowledged: bool) -> None:
    _METRICS.observe_status_update(status, acknowledged)


def observe_document_attempt(classification: str, duration_ms: float) -> None:
    _METRICS.observe_document_attempt(classification, duration_ms)


def observe_retry(backoff_seconds: float) -> None:
    _METRICS.observe_retry(backoff_seconds)


def observe_sync_run(task: str, result: str, items: int = 0) -> None:
    _METRICS.observe_sync_run(task, result, items)


def observe_tick(duration_seconds: float, errors: int = 0) -> None:
    _METRICS.observe_tick(duration_seconds, errors)


def observe_erp_reconnect(result: str) -> None:
    _METRICS.observe_erp_reconnect(result)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def _prom_histogram(lines: list[str], name: str, hist: dict) -> None:
    for le_label, bucket_value in hist["buckets"].items():
        lines.append(_prom_line(f"{name}_bucket", int(bucket_value), labels={"le": le_label}))
    lines.append(_prom_line(f"{name}_sum", float(hist["sum"])))
    lines.append(_prom_line(f"{name}_count", int(hist["count"])))


def prometheus_metrics_text(*, bridge_state: dict | None = None) -> str:
    snapshot = _METRICS.prometheus_snapshot()
    lines: list[str] = []

    lines.append("# HELP bridge_orders_total Orders processed by final local outcome.")
    lines.append("# TYPE bridge_orders_total counter")
    for outcome, value in snapshot["orders_total"]:
        lines.append(_prom_line("bridge_orders_total", int(value), labels={"outcome": outcome}))

    lines.append("# HELP bridge_status_updates_total Status updates sent to the cloud API.")
    lines.append("# TYPE bridge_status_updates_total counter")
    for (status, result), value in snapshot["status_updates_total"]:
        lines.append(_prom_line("bridge_status_updates_total", int(value), labels={"status": status, "result": result}))

    lines.append("# HELP erp_document_attempts_total ERP create-document calls by outcome classification.")
    lines.append("# TYPE erp_document_attempts_total counter")
    for classification, value in snapshot["document_attempts_total"]:
        lines.append(_prom_line("erp_document_attempts_total", int(value), labels={"result": classification}))

    lines.append("# HELP erp_document_attempt_duration_ms ERP create-document call duration in milliseconds.")
    lines.append("# TYPE erp_document_attempt_duration_ms histogram")
    _prom_histogram(lines, "erp_document_attempt_duration_ms", snapshot["document_attempt_duration_ms"])

    lines.append("# HELP erp_retry_count Total create-document retries scheduled.")
    lines.append("# TYPE erp_retry_count counter")
    lines.append(_prom_line("erp_retry_count", int(snapshot["retry_count"])))

    lines.append("# HELP erp_retry_backoff_seconds Backoff applied before a retry.")
    lines.append("# TYPE erp_retry_backoff_seconds histogram")
    _prom_histogram(lines, "erp_retry_backoff_seconds", snapshot["retry_backoff_seconds"])

    lines.append("# HELP bridge_sync_runs_total Periodic sync runs by task and result.")
    lines.append("# TYPE bridge_sync_runs_total counter")
    for (task, result), value in snapshot["sync_runs_total"]:
        lines.append(_prom_line("bridge_sync_runs_total", int(value), labels={"task": task, "result": result}))

    lines.append("# HELP bridge_sync_items_total Items pushed to the cloud API by task.")
    lines.append("# TYPE bridge_sync_items_total counter")
    for task, value in snapshot["sync_items_total"]:
        lines.append(_prom_line("bridge_sync_items_total", int(value), labels={"task": task}))

    lines.append("# HELP bridge_ticks_total Orchestrator loop iterations.")
    lines.append("# TYPE bridge_ticks_total counter")
    lines.append(_prom_line("bridge_ticks_total", int(snapshot["ticks_total"])))

    lines.append("# HELP bridge_tick_errors_total Exceptions contained at the tick boundary.")
    lines.append("# TYPE bridge_tick_errors_total counter")
    lines.append(_prom_line("bridge_tick_errors_total", int(snapshot["tick_errors_total"])))

    lines.append("# HELP bridge_tick_duration_seconds Orchestrator tick duration.")
    lines.append("# TYPE bridge_tick_duration_seconds histogram")
    _prom_histogram(lines, "bridge_tick_duration_seconds", snapshot["tick_duration_seconds"])

    lines.append("# HELP erp_reconnects_total ERP connection attempts by result.")
    lines.append("# TYPE erp_reconnects_total counter")
    for result, value in snapshot["erp_reconnects_total"]:
        lines.append(_prom_line("erp_reconnects_total", int(value), labels={"result": result}))

    state = bridge_state or {}
    lines.append("# HELP erp_connected Whether the ERP connection is currently open.")
    lines.append("# TYPE erp_connected gauge")
    lines.append(_prom_line("erp_connected", 1 if state.get("erp_connected") else 0))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_tick_id(None)
