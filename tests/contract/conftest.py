"""
Fixtures for HTTP contract tests.

The application is exercised without its lifespan: repositories and
services are replaced through ``app.dependency_overrides``.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from api.src.dependencies import get_current_user, get_settings_dependency
from api.src.main import app
from api.src.models.google import CurrentUser


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def override():
    """Register a dependency override for the duration of a test."""

    def register(dependency, value):
        app.dependency_overrides[dependency] = lambda: value
        return value

    return register


@pytest.fixture
def current_user(override) -> CurrentUser:
    user = CurrentUser(id=uuid4(), email="owner@example.com", role="authenticated")
    return override(get_current_user, user)


@pytest.fixture
def access_token(settings, override):
    """Mint a Supabase-style access token for the test settings."""
    override(get_settings_dependency, settings)

    def mint(subject=None, secret=None, expires_in=3600):
        claims = {
            "sub": str(subject or uuid4()),
            "aud": settings.supabase_jwt_audience,
            "email": "owner@example.com",
            "role": "authenticated",
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        }
        return jwt.encode(
            claims,
            secret or settings.supabase_jwt_secret,
            algorithm=settings.supabase_jwt_algorithm,
        )

    return mint
