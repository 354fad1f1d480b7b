from __future__ import annotations

import logging

from quote_intake.core.config import settings
from quote_intake.core.logging import get_logger, log_event
from quote_intake.core.storage import get_storage
from quote_intake.modules.admission.gate import ALLOW_ALL
from quote_intake.modules.estimates.model_client import model_available

logger = get_logger(__name__)


def bootstrap() -> None:
    storage = get_storage()
    origins = settings.allowed_origin_list

    log_event(
        logger,
        "app.bootstrap",
        environment=settings.environment,
        storage_backend=storage.backend,
        allowed_origins=origins,
        rate_limit_max=settings.rate_limit_max,
        rate_limit_window_seconds=settings.rate_limit_window_seconds,
        model=settings.openai_model,
    )

    # Misconfiguration is reported, not fatal: the gate and fallback paths still behave safely.
    if not origins:
        log_event(logger, "app.config.no_origins", level=logging.WARNING)
    elif ALLOW_ALL in origins and settings.environment != "dev":
        log_event(logger, "app.config.allow_all_origins", level=logging.WARNING)
    if not settings.admin_token:
        log_event(logger, "app.config.no_admin_token", level=logging.WARNING)
    if not model_available():
        log_event(logger, "app.config.no_model_key", level=logging.WARNING)
    if settings.secret_key == "change-me" and settings.environment not in {"dev", "test"}:
        log_event(logger, "app.config.default_secret_key", level=logging.WARNING)
