from __future__ import annotations

import re
import socket
import urllib.error
from typing import Any, Dict

RETRYABLE = "retryable"
FATAL = "fatal"

_RETRYABLE_HTTP_CODES = {408, 429}


class BridgeError(Exception):
    default_code = "bridge_error"
    default_retryable = False

    def __init__(
        self,
        details: str | None = None,
        *,
        code: str | None = None,
        retryable: bool | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.retryable = bool(self.default_retryable if retryable is None else retryable)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)


class TransientRemoteError(BridgeError):
    default_code = "remote_temporarily_unavailable"
    default_retryable = True


class FatalRemoteError(BridgeError):
    default_code = "remote_rejected"
    default_retryable = False


class ConnectivityError(TransientRemoteError):
    default_code = "remote_unreachable"


class ConfigurationError(BridgeError):
    default_code = "configuration_invalid"


class ErpGatewayError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        definitive: bool = False,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = str(code or "").strip() or None
        self.definitive = bool(definitive)
        self.http_status = int(http_status) if http_status else None


_HTTP_CODE_PATTERN = re.compile(r"http\s+(\d{3})", re.IGNORECASE)


def is_retryable_http_status(status: int) -> bool:
    return status >= 500 or status in _RETRYABLE_HTTP_CODES


def http_status_from_message(details: str | None) -> int | None:
    match = _HTTP_CODE_PATTERN.search(str(details or ""))
    if not match:
        return None
    return int(match.group(1))


def classify_failure(exc: BaseException) -> str:
    """Map a failed attempt to ``RETRYABLE`` or ``FATAL``.

    Transport trouble (connection refused, DNS, timeouts) and remote 5xx,
    408 and 429 responses are retryable. Malformed input, other 4xx responses,
    definitive gateway rejections and anything unrecognised are fatal.
    """
    if isinstance(exc, BridgeError):
        return RETRYABLE if exc.retryable else FATAL
    if isinstance(exc, ErpGatewayError):
        if exc.definitive:
            return FATAL
        status = exc.http_status or http_status_from_message(str(exc))
        if status is not None and 400 <= status < 500:
            return RETRYABLE if status in _RETRYABLE_HTTP_CODES else FATAL
        return RETRYABLE
    if isinstance(exc, urllib.error.HTTPError):
        return RETRYABLE if is_retryable_http_status(int(exc.code)) else FATAL
    if isinstance(exc, (urllib.error.URLError, ConnectionError, TimeoutError, socket.timeout)):
        return RETRYABLE
    return FATAL


def failure_message(exc: BaseException) -> str:
    if isinstance(exc, BridgeError):
        return exc.details or exc.code
    message = str(exc).strip()
    return message or exc.__class__.__name__
