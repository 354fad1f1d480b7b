from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse, Response
from starlette.requests import Request

from quote_intake.modules.admission.gate import GATED_METHODS, AdmissionError, build_gate
from quote_intake.modules.estimates.schemas import QuoteRequest
from quote_intake.modules.estimates.service import create_estimate

router = APIRouter(tags=["estimates"])


def _error_body(_code: str, message: str, issues: list[dict[str, Any]] | None) -> dict[str, Any]:
    body: dict[str, Any] = {"customer_line": message}
    if issues is not None:
        body["error"] = issues
    return body


@router.api_route("/estimate", methods=GATED_METHODS, response_model=None)
async def estimate(request: Request) -> Response:
    gate = build_gate("estimate", error_body=_error_body)
    cors = gate.cors_headers(request.headers.get("origin"))
    try:
        admission = await gate.admit(request)
        if admission.preflight:
            return Response(status_code=status.HTTP_204_NO_CONTENT, headers=cors)
        quote = gate.validate(QuoteRequest, admission.body)
    except AdmissionError as e:
        return e.to_response(headers=cors)

    result = await asyncio.to_thread(create_estimate, quote, client_ip=admission.client_ip)
    return JSONResponse(content=result.model_dump(mode="json"), headers=cors)
