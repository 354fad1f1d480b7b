from __future__ import annotations

import re
from typing import Any

import httpx

from quote_intake.core.config import settings

_DEFAULT_SYSTEM_PROMPT = (
    "You are EstimatorAI. If you see this default, set ESTIMATOR_SYSTEM_PROMPT.\n"
    "Return first line as the customer-facing range, followed by a JSON blob with details."
)

_BOLD_RE = re.compile(r"\bbold\b", re.I)


class ModelError(RuntimeError):
    pass


def model_available() -> bool:
    return bool(settings.openai_api_key)


def estimator_system_prompt() -> str:
    # The first line is rendered as plain text, so any request to bold it is dropped.
    raw = settings.estimator_system_prompt or _DEFAULT_SYSTEM_PROMPT
    return _BOLD_RE.sub("", raw).strip()


def build_messages(*, zip_code: str, description: str, image_urls: list[str]) -> list[dict[str, Any]]:
    user_parts: list[dict[str, Any]] = [
        {"type": "text", "text": f"ZIP: {zip_code}\n\nDescription:\n{description}"}
    ]
    for url in image_urls:
        user_parts.append({"type": "image_url", "image_url": {"url": url}})
    return [
        {"role": "system", "content": estimator_system_prompt()},
        {"role": "user", "content": user_parts},
    ]


def request_estimate(*, zip_code: str, description: str, image_urls: list[str]) -> str:
    """
    Ask the vision model for a quote and return its raw text.

    Raises ModelError on a missing key, transport error, non-2xx status,
    unexpected response shape or empty output.
    """
    if not model_available():
        raise ModelError("OPENAI_API_KEY is not configured")

    payload = {
        "model": settings.openai_model,
        "temperature": settings.estimator_temperature,
        "messages": build_messages(
            zip_code=zip_code, description=description, image_urls=image_urls
        ),
    }
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }

    url = settings.openai_base_url.rstrip("/") + "/chat/completions"
    try:
        resp = httpx.post(
            url,
            headers=headers,
            json=payload,
            timeout=float(settings.estimator_timeout_seconds or 60.0),
            follow_redirects=True,
        )
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ModelError(f"Model API returned HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise ModelError(f"Model API request failed: {type(e).__name__}") from e

    try:
        raw = resp.json()
        msg = raw["choices"][0]["message"]
        content = msg.get("content") if isinstance(msg, dict) else None
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise ModelError("Unexpected model response shape") from e

    text = content.strip() if isinstance(content, str) else ""
    if not text:
        raise ModelError("Model returned empty output")
    return text
