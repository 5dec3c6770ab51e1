from __future__ import annotations

import argparse
import logging
import signal
import threading

from werkzeug.serving import make_server

from bridge import attach_orchestrator, create_app
from bridge.config import Config
from bridge.contexts.sync.application.orchestrator import build_orchestrator
from bridge.errors import ConfigurationError
from bridge.settings import BridgeSettings
from bridge.workers.runtime import ERP_MODES, build_gateway, build_order_source

logger = logging.getLogger("bridge.worker")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bridge worker: cloud orders into ERP documents, ERP catalog into the cloud.")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit.")
    parser.add_argument("--interval", type=int, default=0, help="Seconds between ticks (overrides POLL_INTERVAL_SECONDS).")
    parser.add_argument("--erp-mode", choices=ERP_MODES, default=None, help="ERP gateway strategy (overrides ERP_MODE).")
    return parser


def _install_signal_handlers(orchestrator, logger) -> None:
    def _handle(signum, _frame):
        logger.info("bridge_worker_signal_received", extra={"signal": signal.Signals(signum).name})
        orchestrator.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _start_health_server(app, port: int):
    server = make_server("0.0.0.0", port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="bridge-health", daemon=True)
    thread.start()
    app.logger.info("bridge_health_server_started", extra={"port": port})
    return server


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        app = create_app(Config())
    except ConfigurationError as exc:
        logger.error("bridge_worker_configuration_invalid", extra={"error": exc.details, "code": exc.code})
        return 2
    config = dict(app.config)
    if args.interval:
        config["POLL_INTERVAL_SECONDS"] = max(1, int(args.interval))
    if args.erp_mode:
        config["ERP_MODE"] = args.erp_mode

    try:
        gateway = build_gateway(config)
        order_source = build_order_source(config)
    except ConfigurationError as exc:
        app.logger.error("bridge_worker_configuration_invalid", extra={"error": exc.details, "code": exc.code})
        return 2

    settings = BridgeSettings.from_config(config)
    orchestrator = build_orchestrator(settings, order_source, gateway)
    attach_orchestrator(app, orchestrator)
    _install_signal_handlers(orchestrator, app.logger)

    server = None
    health_port = int(config.get("HEALTH_PORT") or 0)
    if health_port > 0 and not args.once:
        server = _start_health_server(app, health_port)

    app.logger.info(
        "bridge_worker_configured",
        extra={
            "erp_mode": config.get("ERP_MODE"),
            "poll_interval_seconds": settings.poll_interval_seconds,
            "max_attempts": settings.max_attempts,
            "backoff_schedule": list(settings.backoff_schedule),
        },
    )
    try:
        orchestrator.run(max_ticks=1 if args.once else None)
    finally:
        if server is not None:
            server.shutdown()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
