from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class AdminListItem(BaseModel):
    key: str
    url: str
    uploaded_at: datetime | None
    size: int
    date: str | None
    zip: str | None
    serviceable: bool
    customer_line: str
    image_count: int
    final_range: str


class AdminListOut(BaseModel):
    items: list[AdminListItem]
    next_cursor: str | None
