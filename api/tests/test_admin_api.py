"""Tests for admin user management and webhook inspection."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from api.dependencies import require_admin
from api.services.webhook_ingestor import Applied
from conftest import make_allow, make_profile
from httpx import AsyncClient
from photovault.models import AuditLog, WebhookEvent


@pytest.fixture
def admin(app):
    profile = make_profile("admin", email="owner@photovault.test")
    app.dependency_overrides[require_admin] = lambda: make_allow(profile)
    return profile


class TestUsers:
    async def test_list_users(self, client: AsyncClient, mock_db, admin):
        user = make_profile("photographer", email="pat@photovault.test")
        user.created_at = datetime(2026, 9, 1, tzinfo=UTC)
        result = MagicMock()
        result.scalars.return_value.all.return_value = [user]
        mock_db.execute.return_value = result

        resp = await client.get("/v1/admin/users?user_type=photographer&q=pat")

        data = resp.json()["data"]
        assert data[0]["email"] == "pat@photovault.test"
        assert data[0]["disabled"] is False

    async def test_disable_user_writes_audit_entry(self, client: AsyncClient, mock_db, admin):
        target = make_profile("photographer")
        mock_db.get.return_value = target

        resp = await client.patch(f"/v1/admin/users/{target.id}", json={"disabled": True})

        assert resp.status_code == 200
        assert resp.json()["data"]["disabled"] is True
        assert target.disabled_at is not None
        audit = mock_db.add.call_args.args[0]
        assert isinstance(audit, AuditLog)
        assert audit.action == "user.update"
        assert audit.actor_id == admin.id
        assert audit.detail == {"disabled": True}

    async def test_change_role(self, client: AsyncClient, mock_db, admin):
        target = make_profile("client")
        mock_db.get.return_value = target
        resp = await client.patch(
            f"/v1/admin/users/{target.id}", json={"user_type": "photographer"}
        )
        assert resp.json()["data"]["user_type"] == "photographer"
        assert mock_db.add.call_args.args[0].detail == {
            "user_type": {"from": "client", "to": "photographer"}
        }

    async def test_admin_cannot_demote_self(self, client: AsyncClient, mock_db, admin):
        resp = await client.patch(f"/v1/admin/users/{admin.id}", json={"user_type": "client"})
        assert resp.status_code == 400
        mock_db.get.assert_not_awaited()

    async def test_empty_update_is_rejected(self, client: AsyncClient, admin):
        resp = await client.patch(f"/v1/admin/users/{uuid.uuid4()}", json={})
        assert resp.status_code == 400

    async def test_unknown_user_is_404(self, client: AsyncClient, admin):
        resp = await client.patch(f"/v1/admin/users/{uuid.uuid4()}", json={"disabled": False})
        assert resp.status_code == 404


class TestWebhookEvents:
    async def test_replay_unknown_event_is_404(self, client: AsyncClient, admin):
        resp = await client.post(f"/v1/admin/webhooks/{uuid.uuid4()}/replay")
        assert resp.status_code == 404

    async def test_replay_reprocesses_and_audits(self, client: AsyncClient, mock_db, admin):
        event = WebhookEvent(
            id=uuid.uuid4(),
            provider_event_id="evt_replay",
            event_type="invoice.paid",
            payload={"id": "evt_replay", "type": "invoice.paid", "data": {"object": {}}},
        )
        result = MagicMock()
        result.scalars.return_value.first.return_value = event
        mock_db.execute.return_value = result
        applied = Applied(event_id="evt_replay", event_type="invoice.paid", message="ok")

        with patch(
            "api.routers.admin_webhooks.webhook_ingestor.replay",
            new=AsyncMock(return_value=applied),
        ) as replay:
            resp = await client.post(f"/v1/admin/webhooks/{event.id}/replay")

        assert resp.json()["data"] == {"event_id": "evt_replay", "message": "ok"}
        replay.assert_awaited_once_with(mock_db, event)
        audit = mock_db.add.call_args.args[0]
        assert audit.action == "webhook.replay"
        assert audit.target_id == "evt_replay"

    async def test_get_event_includes_payload(self, client: AsyncClient, mock_db, admin):
        event = WebhookEvent(
            id=uuid.uuid4(),
            provider_event_id="evt_1",
            event_type="payout.created",
            payload={"id": "evt_1"},
        )
        mock_db.get.return_value = event
        resp = await client.get(f"/v1/admin/webhooks/{event.id}")
        assert resp.json()["data"]["payload"] == {"id": "evt_1"}
