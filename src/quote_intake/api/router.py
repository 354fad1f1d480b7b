from __future__ import annotations

from fastapi import APIRouter

from quote_intake.modules.admin.api import router as admin_router
from quote_intake.modules.estimates.api import router as estimates_router
from quote_intake.modules.uploads.api import router as uploads_router

router = APIRouter()

router.include_router(estimates_router)
router.include_router(uploads_router)
router.include_router(admin_router)


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
