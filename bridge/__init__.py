from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from bridge.config import Config
from bridge.messages import error_message
from bridge.observability import configure_json_logging, metrics_snapshot, prometheus_metrics_text


def create_app(config_class=Config, orchestrator=None):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    app.extensions["orchestrator"] = orchestrator
    _register_error_handlers(app)
    _register_health(app)
    return app


def attach_orchestrator(app: Flask, orchestrator) -> None:
    app.extensions["orchestrator"] = orchestrator


def _bridge_state(app: Flask):
    orchestrator = app.extensions.get("orchestrator")
    if orchestrator is None:
        return None
    return orchestrator.snapshot()


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        app.logger.exception(
            "unexpected_exception",
            extra={"request_path": request.path, "http_method": request.method},
        )
        payload = {
            "error": {
                "code": "unexpected_error",
                "message": error_message("unexpected_error"),
                "details": str(exc),
            }
        }
        return jsonify(payload), 500


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        state = _bridge_state(app)
        payload = {
            "status": "ok",
            "env": app.config.get("BRIDGE_ENV", "unknown"),
            "erp_mode": app.config.get("ERP_MODE", "unknown"),
            "metrics": metrics_snapshot(),
        }
        if state is None:
            payload["status"] = "idle"
            payload["worker"] = None
            return payload, 200

        payload["worker"] = state
        if state.get("stopping"):
            payload["status"] = "stopping"
        elif not state.get("erp_connected"):
            payload["status"] = "degraded"
        return payload, 200

    @app.route("/metrics")
    def metrics():
        body = prometheus_metrics_text(bridge_state=_bridge_state(app))
        return Response(body, mimetype="text/plain; version=0.0.4")
