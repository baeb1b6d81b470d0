"""Tests that role-gated areas refuse the wrong callers before reading data."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import make_profile
from httpx import AsyncClient

GATED_ROUTES = [
    ("/v1/photographer/clients", "photographer"),
    ("/v1/photographer/galleries", "photographer"),
    ("/v1/photographer/stats", "photographer"),
    ("/v1/client/galleries", "client"),
    ("/v1/client/billing", "client"),
    ("/v1/admin/users", "admin"),
    ("/v1/admin/webhooks", "admin"),
]


@pytest.mark.parametrize("path,_area", GATED_ROUTES)
async def test_anonymous_caller_gets_401(client: AsyncClient, mock_db, path: str, _area: str):
    resp = await client.get(path)
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthenticated"
    mock_db.execute.assert_not_awaited()


@pytest.mark.parametrize(
    "path,caller_type",
    [
        ("/v1/photographer/clients", "client"),
        ("/v1/client/galleries", "photographer"),
        ("/v1/admin/users", "photographer"),
        ("/v1/admin/webhooks", "client"),
    ],
)
async def test_wrong_role_gets_403_without_reading(
    client: AsyncClient, mock_db, signed_in, path: str, caller_type: str
):
    headers = signed_in(make_profile(caller_type))
    resp = await client.get(path, headers=headers)

    assert resp.status_code == 403
    assert resp.json()["error"] == {
        "code": "forbidden",
        "message": "Insufficient role permissions",
    }
    mock_db.execute.assert_not_awaited()


async def test_unprovisioned_caller_gets_not_provisioned(client: AsyncClient, signed_in):
    resp = await client.get("/v1/photographer/clients", headers=signed_in(None))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "not_provisioned"


async def test_disabled_account_is_refused(client: AsyncClient, mock_db, signed_in):
    profile = make_profile("photographer", disabled_at=datetime.now(UTC))
    resp = await client.get("/v1/photographer/clients", headers=signed_in(profile))

    assert resp.status_code == 403
    assert resp.json()["error"]["message"] == "Account disabled"
    mock_db.execute.assert_not_awaited()


async def test_admin_can_enter_photographer_area(client: AsyncClient, signed_in):
    resp = await client.get("/v1/photographer/clients", headers=signed_in(make_profile("admin")))
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "data": []}


async def test_unknown_route_uses_error_envelope(client: AsyncClient):
    resp = await client.get("/v1/nowhere")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
    assert resp.json()["error"]["code"] == "not_found"
