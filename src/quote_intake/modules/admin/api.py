from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from quote_intake.api.deps import require_admin
from quote_intake.modules.admin.schemas import AdminListOut
from quote_intake.modules.admin.service import DEFAULT_LIMIT, get_record, list_records

router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/admin/list", response_model=AdminListOut)
def admin_list(
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
    date: str | None = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    zip: str | None = None,
) -> AdminListOut:
    return list_records(limit=limit, cursor=cursor, date=date, zip_code=zip)


@router.get("/admin/get")
def admin_get(url: str | None = None, key: str | None = None) -> Response:
    body = get_record(url=url, key=key)
    return Response(content=body, media_type="application/json")
