"""JSON logging for the API and the reconciliation/promotion services.

Every record is a single JSON line. The request id of the HTTP request being
served is carried in a context variable, so service-level records such as
``session_signal_reconciled`` can be joined with the access log line.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from muster.core.security import bot_token_matches, decode_token

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

CONTEXT_KEYS = (
    "actor",
    "user_id",
    "participant_id",
    "orbat_id",
    "attendance_id",
    "proposal_id",
    "error_code",
)
REQUEST_KEYS = ("path", "method", "status_code", "latency_ms")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or request_id_var.get()
        if request_id:
            payload["request_id"] = request_id

        for key in CONTEXT_KEYS + REQUEST_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)
    # Access lines come from RequestLoggingMiddleware.
    logging.getLogger("uvicorn.access").disabled = True


def resolve_actor(request: Request) -> tuple[str, Optional[int]]:
    """Who is calling: ``("bot", None)``, ``("user", id)`` or ``("anonymous", None)``."""
    auth_header = request.headers.get("authorization") or ""
    scheme, _, token = auth_header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return "anonymous", None
    if bot_token_matches(token):
        return "bot", None
    try:
        raw_user_id = decode_token(token).get("sub")
        return ("user", int(raw_user_id)) if raw_user_id is not None else ("anonymous", None)
    except (JWTError, ValueError, TypeError):
        return "anonymous", None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, logger_name: str = "request") -> None:
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)
        self.security_logger = logging.getLogger("security")

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        actor, user_id = resolve_actor(request)
        fields = {"path": request.url.path, "method": request.method, "actor": actor, "user_id": user_id}
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                self.logger.exception(
                    "unhandled_exception",
                    extra={**fields, "latency_ms": round((time.perf_counter() - start) * 1000, 2)},
                )
                raise

            fields.update(
                status_code=response.status_code,
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            self.logger.info("request", extra=fields)
            if response.status_code in (401, 403):
                self.security_logger.info("access_denied", extra=fields)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-Id"] = request_id
        return response
