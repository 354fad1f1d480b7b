from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.requests import Request

from quote_intake.core.config import settings
from quote_intake.core.logging import get_logger, log_event, log_exception
from quote_intake.modules.admission.gate import GATED_METHODS, AdmissionError, build_gate
from quote_intake.modules.uploads.schemas import SignUploadIn, UploadOut
from quote_intake.modules.uploads.service import (
    UploadLimitError,
    read_upload,
    sign_upload,
    store_upload,
)

router = APIRouter(tags=["uploads"])
logger = get_logger(__name__)

upload_token_scheme = HTTPBearer(auto_error=False)

SIGN_FAILED = "UPLOAD_SIGN_FAILED"


def _error_body(code: str, message: str, issues: list[dict[str, Any]] | None) -> dict[str, Any]:
    body: dict[str, Any] = {
        "error": SIGN_FAILED if code in {"BAD_REQUEST", "INVALID_REQUEST"} else code,
        "message": message,
    }
    if issues is not None:
        body["issues"] = issues
    return body


@router.api_route("/blob/sign", methods=GATED_METHODS, response_model=None)
async def sign(request: Request) -> Response:
    gate = build_gate("upload", error_body=_error_body)
    cors = gate.cors_headers(request.headers.get("origin"))
    try:
        admission = await gate.admit(request)
        if admission.preflight:
            return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors)
        payload = gate.validate(SignUploadIn, admission.body)
    except AdmissionError as e:
        return e.to_response(headers=cors)

    try:
        out = await asyncio.to_thread(
            sign_upload,
            payload,
            client_ip=admission.client_ip,
            user_agent=request.headers.get("user-agent", ""),
        )
    except UploadLimitError as e:
        log_event(logger, "upload.sign.rejected", level=logging.WARNING, reason=str(e))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": SIGN_FAILED, "message": str(e)},
            headers=cors,
        )
    except Exception:  # noqa: BLE001
        log_exception(logger, "upload.sign.failure")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": SIGN_FAILED, "message": settings.busy_customer_line},
            headers=cors,
        )
    return JSONResponse(content=out.model_dump(by_alias=True), headers=cors)


@router.api_route("/blob/upload", methods=["PUT", "OPTIONS"], response_model=None)
async def upload(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(upload_token_scheme),
) -> Response:
    gate = build_gate("upload", error_body=_error_body, methods=("PUT",))
    cors = gate.cors_headers(request.headers.get("origin"))
    if request.method == "OPTIONS":
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors)

    body = await request.body()
    out: UploadOut = await asyncio.to_thread(
        store_upload,
        token=credentials.credentials if credentials else None,
        content_type=request.headers.get("content-type"),
        body=body,
    )
    return JSONResponse(content=out.model_dump(by_alias=True), headers=cors)


@router.get("/blob/files/{key:path}")
def download(key: str) -> Response:
    body, content_type = read_upload(key)
    return Response(content=body, media_type=content_type)
