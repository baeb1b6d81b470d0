"""Tests for upload session endpoints."""

from __future__ import annotations

import uuid
from unittest.mock import MagicMock

import pytest
from api.dependencies import require_photographer
from conftest import make_allow, make_profile
from httpx import AsyncClient
from photovault.models import UploadManifest


@pytest.fixture
def photographer(app):
    profile = make_profile("photographer")
    app.dependency_overrides[require_photographer] = lambda: make_allow(profile)
    return profile


async def test_create_session(client: AsyncClient, mock_db, photographer):
    resp = await client.post(
        "/v1/upload/sessions", json={"filename": "Smith Wedding.zip", "total_chunks": 3}
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total_chunks"] == 3
    assert data["missing_chunks"] == [0, 1, 2]
    assert data["completed"] is False
    assert data["storage_path"].startswith(f"{photographer.id}/")
    assert data["storage_path"].endswith("/Smith_Wedding.zip")
    manifest = mock_db.add.call_args.args[0]
    assert isinstance(manifest, UploadManifest)
    assert manifest.owner_id == photographer.id


async def test_create_session_validates_body(client: AsyncClient, photographer):
    resp = await client.post("/v1/upload/sessions", json={"filename": "", "total_chunks": 0})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


async def test_unknown_session_is_404(client: AsyncClient, photographer):
    resp = await client.get(f"/v1/upload/sessions/{uuid.uuid4()}")
    assert resp.status_code == 404


async def test_session_status(client: AsyncClient, mock_db, photographer):
    manifest = UploadManifest(
        id=uuid.uuid4(),
        owner_id=photographer.id,
        storage_path="p/u/f.zip",
        total_chunks=3,
        received_chunks=[0, 2],
    )
    result = MagicMock()
    result.scalars.return_value.first.return_value = manifest
    mock_db.execute.return_value = result

    resp = await client.get(f"/v1/upload/sessions/{manifest.id}")

    assert resp.json()["data"]["received_chunks"] == [0, 2]
    assert resp.json()["data"]["missing_chunks"] == [1]


async def test_clients_cannot_upload(client: AsyncClient, app, signed_in):
    app.dependency_overrides.pop(require_photographer, None)
    resp = await client.post(
        "/v1/upload/sessions",
        json={"filename": "a.zip", "total_chunks": 1},
        headers=signed_in(make_profile("client")),
    )
    assert resp.status_code == 403
