"""
Request logging middleware.

Every HTTP request gets a request id, either the caller's ``X-Request-ID``
(webhook senders and dashboards often supply one) or a fresh uuid4. The id is
published through ``request_id_ctx`` so exception handlers and the webhook
receiver can include it, and is echoed in the ``x-request-id`` response
header.

Health checks are logged at DEBUG so they do not drown out sync traffic.
"""
import json
import logging
import re
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

from app.core.logging_config import _sanitize_data

logger = logging.getLogger(__name__)

request_id_ctx: ContextVar[str] = ContextVar('request_id', default='unknown')
request_path_ctx: ContextVar[str] = ContextVar('request_path', default='unknown')

DEFAULT_STATUS_CODE = 500
SLOW_REQUEST_MS = 10000
MAX_LOGGED_BODY = 1000

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")
_QUIET_PATHS = ("/health",)


def _incoming_request_id(scope) -> Optional[str]:
    for name, value in scope.get("headers") or []:
        if name.lower() == b"x-request-id":
            candidate = value.decode("latin-1").strip()
            return candidate if _REQUEST_ID_RE.match(candidate) else None
    return None


def _sanitize_response_body(response_body: str) -> str:
    """Mask sensitive fields in a captured 4xx body before it is logged."""
    if not response_body:
        return response_body
    try:
        return json.dumps(_sanitize_data(json.loads(response_body)))
    except (json.JSONDecodeError, TypeError):
        sanitized = _sanitize_data(response_body)
        return str(sanitized) if sanitized is not None else ""


class _ResponseRecorder:
    """Captures status and a bounded slice of 4xx bodies as they are sent."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.status_code: Optional[int] = None
        self.client_error_body: Optional[str] = None

    def wrap(self, send):
        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                self.status_code = message.get("status", DEFAULT_STATUS_CODE)
                headers = list(message.get("headers", []))
                headers.append([b"x-request-id", self.request_id.encode()])
                message["headers"] = headers
            elif message["type"] == "http.response.body" and self.status_code and 400 <= self.status_code < 500:
                body = message.get("body", b"")
                if body and self.client_error_body is None:
                    self.client_error_body = body[:MAX_LOGGED_BODY].decode("utf-8", errors="replace")
            await send(message)

        return send_wrapper


class RequestLoggingMiddleware:
    """ASGI middleware that tags each request with an id and logs its outcome."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_request_id(scope) or str(uuid.uuid4())
        request_id_ctx.set(request_id)
        path = scope.get("path", "/")
        request_path_ctx.set(path)

        quiet = path.endswith(_QUIET_PATHS)
        base: Dict[str, Any] = {
            "request_id": request_id,
            "method": scope.get("method", "UNKNOWN"),
            "path": path,
            "client_ip": scope["client"][0] if scope.get("client") else "unknown",
        }
        logger.log(logging.DEBUG if quiet else logging.INFO, "Request started", extra={**base, "event": "request_start"})

        recorder = _ResponseRecorder(request_id)
        start_time = time.time()
        error_message: Optional[str] = None
        try:
            await self.app(scope, receive, recorder.wrap(send))
        except Exception as e:
            error_message = str(e)
            logger.error(
                "Request failed with exception",
                extra={**base, "error": error_message, "event": "request_exception"},
                exc_info=True,
            )
            raise
        finally:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            status_code = recorder.status_code or DEFAULT_STATUS_CODE
            extra = {**base, "status_code": status_code, "duration_ms": duration_ms, "event": "request_complete"}

            if duration_ms >= SLOW_REQUEST_MS:
                logger.warning("Slow request", extra={**base, "duration_ms": duration_ms, "event": "request_slow"})

            if error_message is not None:
                logger.error("Request completed with error", extra={**extra, "error": error_message})
            elif status_code >= 500:
                logger.error("Request completed with server error", extra=extra)
            elif status_code >= 400:
                if recorder.client_error_body:
                    extra["response_body"] = _sanitize_response_body(recorder.client_error_body)
                logger.warning("Request completed with client error", extra=extra)
            else:
                logger.log(logging.DEBUG if quiet else logging.INFO, "Request completed successfully", extra=extra)
