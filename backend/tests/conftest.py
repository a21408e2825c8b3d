"""Pytest configuration and fixtures."""

import os
import secrets

import pytest

from mindmate.crypto import generate_key

# Generate a unique test secret for this test run to prevent token forgery
_TEST_JWT_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

os.environ.setdefault("JWT_SECRET_KEY", _TEST_JWT_SECRET)
os.environ.setdefault("SERVER_ENCRYPTION_KEY", generate_key())

from app.config import get_settings  # noqa: E402
from app.database import reset_state  # noqa: E402
from app.main import app  # noqa: E402
from app.rate_limit import limiter  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

# Use clearly invalid test ID that cannot collide with production IDs
TEST_OWNER_ID = "usr_TEST_ONLY_000000"


@pytest.fixture
def fresh_app(tmp_path, monkeypatch):
    """Point the app at a per-test database and drop cached state."""
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "backend.db"))
    get_settings.cache_clear()
    reset_state()
    limiter.reset()
    yield app
    reset_state()
    get_settings.cache_clear()


@pytest.fixture
def client(fresh_app):
    """Create a test client with startup and shutdown run."""
    with TestClient(fresh_app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """Create auth headers with a test token."""
    from app.auth import create_access_token

    token = create_access_token(TEST_OWNER_ID, get_settings())
    return {"Authorization": f"Bearer {token}"}
