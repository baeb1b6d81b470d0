"""Tests for session introspection and sign-out."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, patch

from api.errors import UpstreamUnavailable
from conftest import make_profile, make_token
from httpx import AsyncClient


class TestSessionInfo:
    async def test_anonymous_session(self, client: AsyncClient):
        resp = await client.get("/v1/auth/session")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "data": {"authenticated": False}}

    async def test_photographer_session_routes_to_dashboard(self, client: AsyncClient, signed_in):
        profile = make_profile("photographer", email="pat@photovault.test")
        resp = await client.get("/v1/auth/session", headers=signed_in(profile))

        data = resp.json()["data"]
        assert resp.status_code == 200
        assert data["authenticated"] is True
        assert data["user_id"] == str(profile.id)
        assert data["email"] == "pat@photovault.test"
        assert data["role"] == "photographer"
        assert data["dashboard"] == "/photographer/dashboard"

    async def test_session_without_profile_reports_reason(self, client: AsyncClient, signed_in):
        resp = await client.get("/v1/auth/session", headers=signed_in(None))

        data = resp.json()["data"]
        assert data["authenticated"] is True
        assert data["role"] is None
        assert data["reason"] == "profile not provisioned"

    async def test_allow_listed_email_is_admin(self, client: AsyncClient, signed_in):
        profile = make_profile("client", email="owner@photovault.test")
        resp = await client.get("/v1/auth/session", headers=signed_in(profile))

        data = resp.json()["data"]
        assert data["role"] == "admin"
        assert data["dashboard"] == "/admin/dashboard"

    async def test_expired_token_is_anonymous(self, client: AsyncClient):
        token = make_token(uuid.uuid4(), "late@photovault.test", expires_in=-60)
        resp = await client.get(
            "/v1/auth/session", headers={"Authorization": f"Bearer {token}"}
        )
        assert resp.json()["data"] == {"authenticated": False}

    async def test_session_cookie_is_accepted(self, client: AsyncClient, mock_db):
        profile = make_profile("client")
        mock_db.get.return_value = profile
        client.cookies.set("pv_access_token", make_token(profile.id, profile.email))
        resp = await client.get("/v1/auth/session")
        assert resp.json()["data"]["role"] == "client"

    async def test_provider_outage_is_503_not_signed_out(self, client: AsyncClient):
        with patch(
            "api.services.auth_provider.verify_token",
            new=AsyncMock(side_effect=UpstreamUnavailable("Auth provider timed out")),
        ):
            resp = await client.get(
                "/v1/auth/session", headers={"Authorization": "Bearer some-token"}
            )
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "upstream_unavailable"


class TestLogout:
    async def test_logout_without_session_succeeds(self, client: AsyncClient):
        with patch("api.services.auth_provider.sign_out", new=AsyncMock()) as sign_out:
            resp = await client.post("/v1/auth/logout")

        assert resp.status_code == 200
        assert resp.json()["data"] == {"signed_out": True}
        assert "clear-site-data" not in resp.headers
        sign_out.assert_not_awaited()

    async def test_logout_signs_out_bearer_session(self, client: AsyncClient):
        with patch("api.services.auth_provider.sign_out", new=AsyncMock()) as sign_out:
            resp = await client.post("/v1/auth/logout", headers={"Authorization": "Bearer tok"})

        assert resp.status_code == 200
        sign_out.assert_awaited_once_with("tok")
        assert resp.headers["clear-site-data"] == '"cookies", "storage"'

    async def test_logout_clears_credential_cookies(self, client: AsyncClient):
        client.cookies.set("pv_access_token", "tok")
        client.cookies.set("pv_csrf_token", "csrf123")
        client.cookies.set("sb-project-auth-token", "provider")
        client.cookies.set("theme", "dark")
        with patch("api.services.auth_provider.sign_out", new=AsyncMock()):
            resp = await client.post(
                "/v1/auth/logout",
                headers={"X-CSRF-Token": "csrf123", "Origin": "https://photovault.photo"},
            )

        assert resp.status_code == 200
        cleared = " ".join(resp.headers.get_list("set-cookie"))
        assert "pv_access_token=" in cleared
        assert "pv_csrf_token=" in cleared
        assert "sb-project-auth-token=" in cleared
        assert "theme=" not in cleared

    async def test_logout_tolerates_provider_failure(self, client: AsyncClient):
        with patch(
            "api.services.auth_provider.sign_out",
            new=AsyncMock(side_effect=UpstreamUnavailable("Auth provider unreachable")),
        ):
            resp = await client.post("/v1/auth/logout", headers={"Authorization": "Bearer tok"})

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert "clear-site-data" in resp.headers
