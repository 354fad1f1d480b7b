from __future__ import annotations

import contextvars
import json
import logging
import os
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

ROOT_LOGGER = "quote_intake"

# Per-request fields merged into every event (request_id, client_ip).
_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "log_context", default=None
)

_configured = False


def _utc_ts(created: float) -> str:
    return datetime.fromtimestamp(created, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, message, event, then event fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": _utc_ts(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event:
            payload["event"] = event
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update({k: v for k, v in fields.items() if v is not None})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def configure_logging() -> None:
    global _configured  # noqa: PLW0603
    if _configured:
        return
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.handlers = [handler]
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


@contextmanager
def request_log_context(*, request_id: str) -> Iterator[dict[str, Any]]:
    context: dict[str, Any] = {"request_id": request_id}
    token = _log_context.set(context)
    try:
        yield context
    finally:
        _log_context.reset(token)


def bind_log_context(**fields: Any) -> None:
    """Add fields to the current request's log context; a no-op outside a request."""
    context = _log_context.get()
    if context is not None:
        context.update(fields)


def _merge_fields(fields: dict[str, Any]) -> dict[str, Any]:
    payload = dict(_log_context.get() or {})
    payload.update(fields)
    return {k: v for k, v in payload.items() if v is not None}


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any
) -> None:
    logger.log(level, event, extra={"event": event, "fields": _merge_fields(fields)})


def log_exception(logger: logging.Logger, event: str, **fields: Any) -> None:
    logger.exception(event, extra={"event": event, "fields": _merge_fields(fields)})


def monotonic_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns or propagates x-request-id and writes one access event per request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        logger = get_logger(__name__)
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        start = time.monotonic()
        # The query string is left out: admin tokens may travel there.
        with request_log_context(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception:
                log_exception(
                    logger, "http.request.error", method=request.method, path=request.url.path
                )
                raise
            response.headers["x-request-id"] = request_id
            log_event(
                logger,
                "http.request",
                level=logging.DEBUG if request.url.path == "/healthz" else logging.INFO,
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=monotonic_ms(start),
            )
            return response
