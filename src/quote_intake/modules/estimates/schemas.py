from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from quote_intake.core.config import settings

_URL_ADAPTER = TypeAdapter(AnyUrl)


class QuoteRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    zip: Annotated[str, StringConstraints(strip_whitespace=True, min_length=5, max_length=10)]
    description: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=3, max_length=5000)
    ]
    image_urls: list[str]

    @field_validator("image_urls")
    @classmethod
    def _check_image_urls(cls, value: list[str]) -> list[str]:
        if len(value) > settings.max_files:
            raise ValueError(f"At most {settings.max_files} images are allowed")
        for idx, url in enumerate(value):
            try:
                _URL_ADAPTER.validate_python(url)
            except ValidationError as e:
                raise ValueError(f"image_urls[{idx}] is not a valid URL") from e
        return value


class EstimateOut(BaseModel):
    serviceable: bool
    customer_line: str
    data: dict[str, Any]


class QuoteRequestEcho(BaseModel):
    description: str
    image_urls: list[str]


class QuoteTimings(BaseModel):
    ai_ms: int


class QuoteRecord(BaseModel):
    id: str
    ts: datetime
    ip: str
    zip: str
    image_count: int
    serviceable: bool
    customer_line: str
    model: str
    model_text: str
    data: dict[str, Any]
    request: QuoteRequestEcho
    timings: QuoteTimings
