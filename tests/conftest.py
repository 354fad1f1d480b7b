from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any quote_intake imports (settings are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("BASE_URL", "http://testserver")
os.environ.setdefault("ALLOWED_ORIGINS", "https://shop.example.com")
os.environ.setdefault("ADMIN_TOKEN", "admin-secret")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("SECRET_KEY", "test-secret")


@pytest.fixture(autouse=True)
def _reset_state_and_storage() -> None:
    import quote_intake.core.ratelimit as ratelimit_mod
    import quote_intake.core.storage as storage_mod

    storage_mod._storage = None
    ratelimit_mod.reset_admission_state()

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from quote_intake.main import app

    return TestClient(app)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
