"""Tests for health endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

from httpx import AsyncClient


async def test_health_is_plain(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "photovault-api"}
    assert "no-store" in resp.headers["cache-control"]


async def test_ready_when_dependencies_answer(client: AsyncClient):
    with (
        patch("api.routers.health._check_database", new=AsyncMock(return_value="ok")),
        patch(
            "api.routers.health.check_auth_provider",
            new=AsyncMock(return_value="not_configured"),
        ),
    ):
        resp = await client.get("/health/ready")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ready"


async def test_not_ready_when_database_unreachable(client: AsyncClient):
    with (
        patch("api.routers.health._check_database", new=AsyncMock(return_value="unreachable")),
        patch("api.routers.health.check_auth_provider", new=AsyncMock(return_value="ok")),
    ):
        resp = await client.get("/health/ready")
    assert resp.status_code == 503
    assert resp.json()["services"] == {"database": "unreachable", "auth_provider": "ok"}
