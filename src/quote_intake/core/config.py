from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FALLBACK_LINE = (
    "Sorry, we couldn't generate a quote right now. Please text us your message "
    "and photos for a fast manual quote."
)
DEFAULT_BUSY_LINE = (
    "We couldn't process your request right now. Please try again in a few minutes."
)
DEFAULT_OUT_OF_AREA_LINE = (
    "Thank you for your interest, but we are not currently servicing your area at this time."
)


def split_csv(raw: str | None) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"
    secret_key: str = "change-me"

    # Comma-separated list, or "*" to accept any origin.
    allowed_origins: str = ""
    admin_token: str | None = None

    max_files: int = 12
    max_file_mb: float = 12
    max_total_mb: float = 60
    allowed_upload_content_types: str = "image/jpeg,image/png,image/webp"
    upload_token_exp_minutes: int = 30

    rate_limit_max: int = 5
    upload_rate_limit_max: int = 60
    rate_limit_window_seconds: int = 10 * 60
    rate_limit_max_clients: int = 5000

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    estimator_system_prompt: str | None = None
    estimator_timeout_seconds: float = 60.0
    estimator_temperature: float = 0.2

    fallback_customer_line: str = DEFAULT_FALLBACK_LINE
    busy_customer_line: str = DEFAULT_BUSY_LINE
    service_area_zips: str = ""
    out_of_area_line: str = DEFAULT_OUT_OF_AREA_LINE

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")
    storage_public_base_url: str | None = None
    records_prefix: str = "estimates/"

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "quote-intake"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    @property
    def allowed_origin_list(self) -> list[str]:
        return split_csv(self.allowed_origins)

    @property
    def allowed_content_type_list(self) -> list[str]:
        return [t.lower() for t in split_csv(self.allowed_upload_content_types)]

    @property
    def service_area_zip_set(self) -> set[str]:
        return set(split_csv(self.service_area_zips))


settings = Settings()
