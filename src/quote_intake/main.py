from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from quote_intake.api.router import router as api_router
from quote_intake.bootstrap import bootstrap
from quote_intake.core.logging import RequestContextMiddleware


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        bootstrap()
        yield

    app = FastAPI(title="Quote Intake", version="0.1.0", lifespan=lifespan)
    # CORS is answered per route by the admission gate, which needs to see preflights itself.
    app.add_middleware(RequestContextMiddleware)
    app.include_router(api_router)
    return app


app = create_app()
