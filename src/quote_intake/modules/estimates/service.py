from __future__ import annotations

import logging
import re
import time
import uuid
from datetime import UTC, datetime
from typing import Any

from quote_intake.core.config import settings
from quote_intake.core.logging import get_logger, log_event, log_exception, monotonic_ms
from quote_intake.core.storage import get_storage
from quote_intake.modules.estimates.model_client import ModelError, request_estimate
from quote_intake.modules.estimates.schemas import (
    EstimateOut,
    QuoteRecord,
    QuoteRequest,
    QuoteRequestEcho,
    QuoteTimings,
)
from quote_intake.modules.extraction.loose_json import extract_json_loose

logger = get_logger(__name__)

_BOLD_LINE_RE = re.compile(r"^\*\*(.+)\*\*$")
_OUTSIDE_RE = re.compile(r"outside", re.I)


def fallback_estimate() -> EstimateOut:
    return EstimateOut(serviceable=True, customer_line=settings.fallback_customer_line, data={})


def first_line(text: str) -> str:
    line = (text or "").split("\n")[0].strip()
    m = _BOLD_LINE_RE.match(line)
    if m:
        line = m.group(1).strip()
    return line


def is_serviceable(data: dict[str, Any], customer_line: str) -> bool:
    flag = data.get("serviceable")
    if isinstance(flag, bool):
        return flag
    return not _OUTSIDE_RE.search(customer_line)


def in_service_area(zip_code: str) -> bool:
    area = settings.service_area_zip_set
    return not area or zip_code in area


def record_key(record: QuoteRecord) -> str:
    prefix = settings.records_prefix.strip("/") or "estimates"
    return f"{prefix}/{record.ts:%Y-%m}/{record.id}.json"


def save_record(record: QuoteRecord) -> str | None:
    """Persist the record; failures are logged and swallowed since storage is an audit trail."""
    key = record_key(record)
    try:
        get_storage().put(
            key=key,
            body=record.model_dump_json(indent=2).encode("utf-8"),
            content_type="application/json",
        )
    except Exception:  # noqa: BLE001
        log_exception(logger, "estimate.store.failure", storage_key=key, estimate_id=record.id)
        return None
    return key


def create_estimate(quote: QuoteRequest, *, client_ip: str) -> EstimateOut:
    """
    Quote an admitted request.

    Everything after admission maps to a 200-shaped body: model and unexpected
    failures return the fallback line so the widget always has something to show.
    """
    if not in_service_area(quote.zip):
        log_event(logger, "estimate.out_of_area", zip=quote.zip)
        return EstimateOut(serviceable=False, customer_line=settings.out_of_area_line, data={})

    try:
        return _quote(quote, client_ip=client_ip)
    except ModelError as e:
        log_event(
            logger,
            "estimate.model.failure",
            level=logging.WARNING,
            zip=quote.zip,
            image_count=len(quote.image_urls),
            error=str(e),
        )
    except Exception:  # noqa: BLE001
        log_exception(logger, "estimate.failure", zip=quote.zip)
    log_event(logger, "estimate.fallback", zip=quote.zip)
    return fallback_estimate()


def _quote(quote: QuoteRequest, *, client_ip: str) -> EstimateOut:
    start = time.monotonic()
    text = request_estimate(
        zip_code=quote.zip, description=quote.description, image_urls=quote.image_urls
    )
    ai_ms = monotonic_ms(start)

    customer_line = first_line(text) or settings.fallback_customer_line
    extracted = extract_json_loose(text)
    value = extracted.value_or({})
    data = value if isinstance(value, dict) else {}
    serviceable = is_serviceable(data, customer_line)

    record = QuoteRecord(
        id=str(uuid.uuid4()),
        ts=datetime.now(UTC),
        ip=client_ip,
        zip=quote.zip,
        image_count=len(quote.image_urls),
        serviceable=serviceable,
        customer_line=customer_line,
        model=settings.openai_model,
        model_text=text,
        data=data,
        request=QuoteRequestEcho(description=quote.description, image_urls=quote.image_urls),
        timings=QuoteTimings(ai_ms=ai_ms),
    )
    key = save_record(record)
    log_event(
        logger,
        "estimate.created",
        estimate_id=record.id,
        zip=quote.zip,
        image_count=record.image_count,
        response_size=len(text),
        json_found=extracted.found,
        storage_key=key,
        ai_ms=ai_ms,
    )

    return EstimateOut(
        serviceable=serviceable,
        customer_line=customer_line,
        data=data,
    )
