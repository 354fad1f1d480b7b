from __future__ import annotations

import mimetypes
import re
import secrets
import time
from datetime import UTC, datetime

from fastapi import HTTPException, status

from quote_intake.core.config import settings
from quote_intake.core.logging import get_logger, log_event
from quote_intake.core.ratelimit import BatchUploadCounter, get_batch_counter
from quote_intake.core.security import create_upload_token, decode_upload_token
from quote_intake.core.storage import StorageError, get_storage
from quote_intake.modules.uploads.schemas import (
    ClientPayload,
    SignedUploadOut,
    SignUploadIn,
    SignUploadOut,
    UploadOut,
)

logger = get_logger(__name__)

MB = 1024 * 1024
UPLOADS_PREFIX = "uploads/"

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


class UploadLimitError(ValueError):
    """A declared file or batch is over a configured limit; the message is user-safe."""


def max_upload_bytes() -> int:
    return int(settings.max_file_mb * MB)


def admit_upload(meta: ClientPayload, *, counter: BatchUploadCounter) -> int | None:
    """
    Check the declared size, batch size, type and batch file count.

    The batch counter only moves for files that pass every other check, so it
    never goes past MAX_FILES. Returns the file's position in its batch.
    """
    size_mb = (meta.size or 0) / MB
    total_mb = (meta.batch_total or 0) / MB
    if size_mb > settings.max_file_mb:
        raise UploadLimitError(f"File exceeds {settings.max_file_mb:g} MB")
    if total_mb > settings.max_total_mb:
        raise UploadLimitError(f"Batch exceeds {settings.max_total_mb:g} MB")
    if meta.type and meta.type.lower() not in settings.allowed_content_type_list:
        raise UploadLimitError(f"File type {meta.type} is not allowed")

    if not meta.batch_id:
        return None
    if counter.count(meta.batch_id) >= settings.max_files:
        raise UploadLimitError(f"Batch exceeds {settings.max_files} files")
    return counter.record_upload(meta.batch_id)


def upload_pathname(pathname: str, *, now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    name = pathname.rsplit("/", 1)[-1].strip() or f"upload-{int(time.time() * 1000)}.jpg"
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        stem, ext = name, ""
    stem = _UNSAFE_NAME_RE.sub("-", stem).strip("-.")[:100] or "upload"
    ext = _UNSAFE_NAME_RE.sub("", ext)[:10].lower()
    suffix = secrets.token_hex(6)
    return f"{UPLOADS_PREFIX}{now:%Y-%m}/{stem}-{suffix}" + (f".{ext}" if ext else "")


def sign_upload(body: SignUploadIn, *, client_ip: str, user_agent: str) -> SignUploadOut:
    meta = ClientPayload.parse(body.payload.client_payload)
    position = admit_upload(meta, counter=get_batch_counter())

    pathname = upload_pathname(body.payload.pathname)
    content_types = settings.allowed_content_type_list
    max_bytes = max_upload_bytes()
    token = create_upload_token(
        pathname=pathname,
        allowed_content_types=content_types,
        max_bytes=max_bytes,
        token_payload={"ip": client_ip, "ua": user_agent, "batchId": meta.batch_id or ""},
    )
    signed = get_storage().sign_upload(
        key=pathname,
        allowed_content_types=content_types,
        max_bytes=max_bytes,
        client_token=token,
        expires_s=settings.upload_token_exp_minutes * 60,
    )
    log_event(
        logger,
        "upload.sign.issued",
        pathname=pathname,
        batch_id=meta.batch_id,
        batch_position=position,
        declared_size=meta.size,
        declared_type=meta.type,
    )
    return SignUploadOut(
        client_token=token,
        pathname=pathname,
        allowed_content_types=content_types,
        maximum_size_in_bytes=max_bytes,
        upload=SignedUploadOut(
            method=signed.method, url=signed.url, fields=signed.fields, headers=signed.headers
        ),
    )


def store_upload(*, token: str | None, content_type: str | None, body: bytes) -> UploadOut:
    """Receive a file signed by `sign_upload` when the local storage backend is active."""
    storage = get_storage()
    if storage.backend != "local":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    claims = decode_upload_token(token) if token else None
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid upload token"
        )

    ct = (content_type or "").split(";", 1)[0].strip().lower()
    if ct not in (claims.get("ct") or []):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail="Content type not allowed"
        )
    if not body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty upload")
    if len(body) > int(claims.get("max") or 0):
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large"
        )

    pathname = claims["sub"]
    stored = storage.put(key=pathname, body=body, content_type=ct)
    token_payload = claims.get("tp") or {}
    log_event(
        logger,
        "blob.upload.completed",
        path=pathname,
        size=stored.byte_size,
        type=ct,
        batch_id=token_payload.get("batchId") or None,
    )
    return UploadOut(
        url=storage.url_for(pathname), pathname=pathname, content_type=ct, size=stored.byte_size
    )


def read_upload(key: str) -> tuple[bytes, str]:
    """Serve an uploaded photo; stored estimate records stay behind the admin API."""
    storage = get_storage()
    if storage.backend != "local" or not key.startswith(UPLOADS_PREFIX):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    try:
        body = storage.get(key=key)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found") from e
    content_type, _ = mimetypes.guess_type(key)
    return body, content_type or "application/octet-stream"
