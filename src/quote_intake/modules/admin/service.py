from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException, status

from quote_intake.core.config import settings
from quote_intake.core.logging import get_logger, log_event
from quote_intake.core.storage import ObjectStorage, StoredObject, StorageError, get_storage
from quote_intake.modules.admin.schemas import AdminListItem, AdminListOut

logger = get_logger(__name__)

LEGACY_PREFIX = "results"
PAGE_SIZE = 200
MAX_LIMIT = 200
DEFAULT_LIMIT = 50

# estimates/2025-08/<id>.json
_RECORD_KEY_RE = re.compile(r"^[^/]+/(?P<month>\d{4}-\d{2})/(?P<id>[^/]+)\.json$")
# results/2025-08-24/06268-2025-08-24T12-34-56-789Z.json
_LEGACY_KEY_RE = re.compile(
    r"^results/(?P<date>\d{4}-\d{2}-\d{2})/(?P<zip>[^/]+?)-(?P<ts>\d{4}-\d{2}-\d{2}T[^/]+)\.json$"
)
_PRICE_RE = re.compile(r"\$\S*")


@dataclass(frozen=True)
class KeyInfo:
    month: str | None = None
    date: str | None = None
    zip: str | None = None


def parse_key(key: str) -> KeyInfo:
    m = _LEGACY_KEY_RE.match(key)
    if m:
        return KeyInfo(month=m.group("date")[:7], date=m.group("date"), zip=m.group("zip"))
    m = _RECORD_KEY_RE.match(key)
    if m:
        return KeyInfo(month=m.group("month"))
    return KeyInfo()


def encode_cursor(key: str) -> str:
    return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str | None) -> str | None:
    if not cursor:
        return None
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor") from e


def clamp_limit(limit: int | None) -> int:
    if not limit:
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, limit))


def _list_prefix(date: str | None) -> str:
    prefix = settings.records_prefix.strip("/") + "/"
    if not date:
        return prefix
    if prefix.rstrip("/") == LEGACY_PREFIX:
        return f"{prefix}{date}/"
    return f"{prefix}{date[:7]}/"


def _load_record(storage: ObjectStorage, key: str) -> dict[str, Any]:
    try:
        record = json.loads(storage.get(key=key))
    except (StorageError, ValueError):
        log_event(logger, "admin.record.unreadable", level=logging.WARNING, storage_key=key)
        return {}
    return record if isinstance(record, dict) else {}


def summarize(storage: ObjectStorage, obj: StoredObject) -> AdminListItem:
    """Flatten a stored record (either key convention) into one admin list row."""
    info = parse_key(obj.key)
    record = _load_record(storage, obj.key)

    data = record.get("data")
    if not isinstance(data, dict):
        data = record.get("result") if isinstance(record.get("result"), dict) else {}
    request = record.get("request") if isinstance(record.get("request"), dict) else {}
    customer_line = str(record.get("customer_line") or record.get("quote_line") or "")

    date = info.date
    ts = record.get("ts") or record.get("created_at")
    if not date and isinstance(ts, str) and len(ts) >= 10:
        date = ts[:10]
    if not date and obj.uploaded_at:
        date = obj.uploaded_at.astimezone(timezone.utc).date().isoformat()

    zip_code = info.zip or record.get("zip") or request.get("zip")
    final_range = data.get("final_range") or data.get("price_range")
    if not final_range:
        m = _PRICE_RE.search(customer_line)
        final_range = m.group(0) if m else ""

    image_count = record.get("image_count")
    return AdminListItem(
        key=obj.key,
        url=storage.url_for(obj.key),
        uploaded_at=obj.uploaded_at,
        size=obj.byte_size,
        date=date,
        zip=str(zip_code) if zip_code else None,
        serviceable=bool(record.get("serviceable")),
        customer_line=customer_line,
        image_count=image_count if isinstance(image_count, int) else 0,
        final_range=str(final_range),
    )


def list_records(
    *,
    limit: int | None = None,
    cursor: str | None = None,
    date: str | None = None,
    zip_code: str | None = None,
) -> AdminListOut:
    """
    Page through stored records, newest first within the page.

    Keeps reading storage pages until `limit` matching rows are collected or the
    listing ends. The cursor is the last key examined, so filtered-out objects
    are never revisited and nothing between pages is skipped.
    """
    storage = get_storage()
    lim = clamp_limit(limit)
    prefix = _list_prefix(date)
    start_after = decode_cursor(cursor)

    items: list[AdminListItem] = []
    next_cursor: str | None = None
    while True:
        page = storage.list(prefix=prefix, start_after=start_after, limit=PAGE_SIZE)
        for idx, obj in enumerate(page.objects):
            start_after = obj.key
            if not obj.key.endswith(".json"):
                continue
            item = summarize(storage, obj)
            if date and item.date != date:
                continue
            if zip_code and item.zip != zip_code:
                continue
            items.append(item)
            if len(items) >= lim:
                more = idx < len(page.objects) - 1 or page.truncated
                next_cursor = encode_cursor(obj.key) if more else None
                break
        if len(items) >= lim or not page.truncated or not page.objects:
            break

    oldest = datetime.min.replace(tzinfo=timezone.utc)
    items.sort(key=lambda i: i.uploaded_at or oldest, reverse=True)
    log_event(
        logger,
        "admin.list",
        prefix=prefix,
        item_count=len(items),
        has_more=next_cursor is not None,
    )
    return AdminListOut(items=items, next_cursor=next_cursor)


def get_record(*, url: str | None = None, key: str | None = None) -> bytes:
    storage = get_storage()
    resolved = storage.key_from_url(url) if url else key
    if not resolved:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing or unrecognized record url",
        )
    try:
        return storage.get(key=resolved)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Record not found") from e
