from __future__ import annotations

import json
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class ClientPayload(BaseModel):
    """Advisory metadata the widget declares about one file; never trusted on its own."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    size: float | None = None
    batch_total: float | None = Field(default=None, alias="batchTotal")
    type: str | None = None
    batch_id: str | None = Field(default=None, alias="batchId", max_length=200)

    @classmethod
    def parse(cls, raw: str | None) -> ClientPayload:
        if not raw:
            return cls()
        try:
            return cls.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            return cls()


class GenerateTokenPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    pathname: str = Field(min_length=1, max_length=1024)
    client_payload: str | None = Field(default=None, alias="clientPayload")
    multipart: bool = False


class SignUploadIn(BaseModel):
    type: Literal["blob.generate-client-token"]
    payload: GenerateTokenPayload


class SignedUploadOut(BaseModel):
    method: str
    url: str
    fields: dict[str, str]
    headers: dict[str, str]


class SignUploadOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["blob.generate-client-token"] = "blob.generate-client-token"
    client_token: str = Field(alias="clientToken")
    pathname: str
    allowed_content_types: list[str] = Field(alias="allowedContentTypes")
    maximum_size_in_bytes: int = Field(alias="maximumSizeInBytes")
    upload: SignedUploadOut


class UploadOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    pathname: str
    content_type: str = Field(alias="contentType")
    size: int
