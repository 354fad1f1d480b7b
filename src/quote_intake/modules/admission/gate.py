from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from fastapi import status
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.requests import Request

from quote_intake.core.config import settings
from quote_intake.core.logging import bind_log_context, get_logger, log_event
from quote_intake.core.ratelimit import SlidingWindowRateLimiter, get_rate_limiter
from quote_intake.modules.extraction.loose_json import strict_json_loads

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# (error_code, user-safe message, per-field issues) -> JSON body
ErrorBody = Callable[[str, str, list[dict[str, Any]] | None], dict[str, Any]]

ALLOW_ALL = "*"

# Routes accept every verb so the gate, not the router, answers 405 with CORS headers.
GATED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class AdmissionError(Exception):
    def __init__(
        self,
        status_code: int,
        *,
        reason: str,
        content: dict[str, Any] | None = None,
        text: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(reason)
        self.status_code = status_code
        self.reason = reason
        self.content = content
        self.text = text
        self.headers = headers or {}

    def to_response(self, *, headers: dict[str, str] | None = None) -> Response:
        merged = {**(headers or {}), **self.headers}
        if self.content is not None:
            return JSONResponse(status_code=self.status_code, content=self.content, headers=merged)
        return PlainTextResponse(self.text or "", status_code=self.status_code, headers=merged)


@dataclass(frozen=True)
class Admission:
    client_ip: str
    body: Any = None
    preflight: bool = False


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def validation_issues(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"path": list(err.get("loc") or ()), "code": err.get("type"), "message": err.get("msg")}
        for err in error.errors()
    ]


class AdmissionGate:
    """
    Decides whether a request may trigger costly work.

    Order: preflight, method, origin, rate, body. Schema validation runs after
    admission through `validate`, so a malformed payload still spends a rate slot
    while a rejected origin never touches the limiter.
    """

    def __init__(
        self,
        *,
        scope: str,
        methods: tuple[str, ...] = ("POST",),
        allowed_origins: list[str],
        rate_limiter: SlidingWindowRateLimiter,
        error_body: ErrorBody,
        busy_message: str,
    ):
        self.scope = scope
        self.methods = methods
        self.allowed_origins = allowed_origins
        self.rate_limiter = rate_limiter
        self.error_body = error_body
        self.busy_message = busy_message

    @property
    def allow_all(self) -> bool:
        return ALLOW_ALL in self.allowed_origins

    def origin_allowed(self, origin: str | None) -> bool:
        if self.allow_all:
            return True
        return bool(origin) and origin in self.allowed_origins

    def cors_headers(self, origin: str | None) -> dict[str, str]:
        headers = {
            "Vary": "Origin",
            "Access-Control-Allow-Methods": ",".join((*self.methods, "OPTIONS")),
            "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With",
        }
        if self.allow_all:
            headers["Access-Control-Allow-Origin"] = origin or "*"
        elif origin and origin in self.allowed_origins:
            headers["Access-Control-Allow-Origin"] = origin
        return headers

    async def admit(self, request: Request) -> Admission:
        method = request.method.upper()
        if method == "OPTIONS":
            return Admission(client_ip=client_ip(request), preflight=True)
        if method not in self.methods:
            raise self._reject(
                status.HTTP_405_METHOD_NOT_ALLOWED, reason="method", text="Method Not Allowed"
            )

        origin = request.headers.get("origin")
        if not self.origin_allowed(origin):
            raise self._reject(
                status.HTTP_403_FORBIDDEN, reason="origin", text="Forbidden", origin=origin
            )

        ip = client_ip(request)
        bind_log_context(client_ip=ip)
        if not self.rate_limiter.admit(ip):
            raise self._reject(
                status.HTTP_429_TOO_MANY_REQUESTS,
                reason="rate",
                content=self.error_body("RATE_LIMITED", self.busy_message, None),
                headers={"Retry-After": str(self.rate_limiter.retry_after(ip))},
            )

        return Admission(client_ip=ip, body=await self._read_json(request))

    async def _read_json(self, request: Request) -> Any:
        raw = await request.body()
        if not raw:
            return {}
        try:
            return strict_json_loads(raw.decode("utf-8"))
        except (ValueError, RecursionError) as e:
            raise self._reject(
                status.HTTP_400_BAD_REQUEST,
                reason="body",
                content=self.error_body("BAD_REQUEST", self.busy_message, None),
            ) from e

    def validate(self, model: type[M], body: Any) -> M:
        try:
            return model.model_validate(body)
        except ValidationError as e:
            issues = validation_issues(e)
            raise self._reject(
                status.HTTP_400_BAD_REQUEST,
                reason="schema",
                content=self.error_body("INVALID_REQUEST", self.busy_message, issues),
                fields=sorted({str(i["path"][0]) for i in issues if i["path"]}),
            ) from e

    def _reject(
        self,
        status_code: int,
        *,
        reason: str,
        content: dict[str, Any] | None = None,
        text: str | None = None,
        headers: dict[str, str] | None = None,
        **fields: Any,
    ) -> AdmissionError:
        log_event(
            logger,
            "admission.rejected",
            level=logging.WARNING,
            scope=self.scope,
            reason=reason,
            status_code=status_code,
            **fields,
        )
        return AdmissionError(
            status_code, reason=reason, content=content, text=text, headers=headers
        )


def build_gate(
    scope: str, *, error_body: ErrorBody, methods: tuple[str, ...] = ("POST",)
) -> AdmissionGate:
    return AdmissionGate(
        scope=scope,
        methods=methods,
        allowed_origins=settings.allowed_origin_list,
        rate_limiter=get_rate_limiter(scope),
        error_body=error_body,
        busy_message=settings.busy_customer_line,
    )
