"""API test configuration."""

import os
import time
import uuid
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

os.environ.setdefault("SKIP_MIGRATION_CHECK", "true")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("ADMIN_EMAILS", "owner@photovault.test")
os.environ.setdefault("SITE_URL", "https://photovault.photo")
os.environ.setdefault("API_URL", "https://api.photovault.photo")
os.environ.setdefault("RESEND_API_KEY", "")
os.environ.setdefault("CRON_SECRET", "")

import pytest
from api.dependencies import get_db
from api.main import create_app
from api.services.access import Allow
from api.services.auth_provider import Principal
from httpx import ASGITransport, AsyncClient
from jose import jwt
from photovault.config import reset_settings_cache
from photovault.models import UserProfile

JWT_SECRET = os.environ["SUPABASE_JWT_SECRET"]


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


def make_token(user_id: uuid.UUID, email: str, *, expires_in: int = 3600) -> str:
    now = int(time.time())
    return jwt.encode(
        {
            "sub": str(user_id),
            "email": email,
            "aud": "authenticated",
            "iat": now,
            "exp": now + expires_in,
        },
        JWT_SECRET,
        algorithm="HS256",
    )


def make_profile(
    user_type: str = "photographer",
    *,
    email: str = "user@photovault.test",
    user_id: uuid.UUID | None = None,
    **fields,
) -> UserProfile:
    return UserProfile(
        id=user_id or uuid.uuid4(),
        user_type=user_type,
        email=email,
        **fields,
    )


def make_allow(profile: UserProfile, role: str | None = None) -> Allow:
    principal = Principal(id=profile.id, email=profile.email or "", verified=True)
    return Allow(role=role or profile.user_type, profile=profile, principal=principal)


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def mock_db():
    """Creates a mock AsyncSession with common patterns pre-configured."""
    session = AsyncMock()
    # AsyncSession.add() is synchronous; use MagicMock to avoid un-awaited coroutine warnings.
    session.add = MagicMock()
    # begin_nested() is used as an async context manager (savepoint).
    session.begin_nested = MagicMock()
    # Default: execute returns empty result set
    empty_result = MagicMock()
    empty_result.scalars.return_value.all.return_value = []
    empty_result.scalars.return_value.first.return_value = None
    empty_result.scalar.return_value = 0
    empty_result.scalar_one_or_none.return_value = None
    empty_result.all.return_value = []
    empty_result.rowcount = 0
    session.execute.return_value = empty_result
    # Default: get returns None
    session.get.return_value = None
    return session


@pytest.fixture
async def client(app, mock_db):
    async def _override_db():
        yield mock_db

    app.dependency_overrides[get_db] = _override_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def lenient_client(app, mock_db):
    """Client that returns 500 responses instead of re-raising server errors."""

    async def _override_db():
        yield mock_db

    app.dependency_overrides[get_db] = _override_db
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def signed_in(mock_db) -> Callable[..., dict[str, str]]:
    """Provision a profile in the mock DB and return bearer headers for it."""

    def _sign_in(profile: UserProfile | None, *, email: str | None = None) -> dict[str, str]:
        if profile is not None:
            mock_db.get.return_value = profile
            email = email or profile.email
            user_id = profile.id
        else:
            user_id = uuid.uuid4()
        token = make_token(user_id, email or "nobody@photovault.test")
        return {"Authorization": f"Bearer {token}"}

    return _sign_in
