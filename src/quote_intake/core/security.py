from __future__ import annotations

import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from quote_intake.core.config import settings

UPLOAD_TOKEN_AUDIENCE = "blob-upload"


def create_upload_token(
    *,
    pathname: str,
    allowed_content_types: list[str],
    max_bytes: int,
    token_payload: dict[str, Any],
    expires_minutes: int | None = None,
) -> str:
    expire_minutes = expires_minutes or settings.upload_token_exp_minutes
    expire = datetime.now(UTC) + timedelta(minutes=expire_minutes)
    payload: dict[str, Any] = {
        "sub": pathname,
        "aud": UPLOAD_TOKEN_AUDIENCE,
        "exp": expire,
        "ct": allowed_content_types,
        "max": max_bytes,
        "tp": token_payload,
    }
    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_upload_token(token: str) -> dict[str, Any] | None:
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=["HS256"], audience=UPLOAD_TOKEN_AUDIENCE
        )
    except JWTError:
        return None
    if not isinstance(payload.get("sub"), str):
        return None
    return payload


def admin_token_matches(candidate: str | None) -> bool:
    expected = settings.admin_token or ""
    if not expected or not candidate:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))
