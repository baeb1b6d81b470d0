"""Tests for unsubscribe links and email rendering/delivery."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from api.services import email_service
from api.services.email_service import EmailDeliveryError, send_email
from api.services.email_template_service import render_email
from httpx import AsyncClient
from photovault.config import reset_settings_cache


class TestUnsubscribe:
    async def test_valid_token_suppresses_sequence(self, client: AsyncClient, mock_db):
        updated = MagicMock(rowcount=1)
        mock_db.execute.return_value = updated
        resp = await client.get(f"/v1/email/unsubscribe?token={uuid.uuid4()}")
        assert resp.status_code == 200
        assert resp.json()["data"] == {"unsubscribed": True}

    async def test_unknown_token_is_404(self, client: AsyncClient):
        resp = await client.get(f"/v1/email/unsubscribe?token={uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    async def test_malformed_token_is_400(self, client: AsyncClient):
        resp = await client.get("/v1/email/unsubscribe?token=not-a-uuid")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestRendering:
    def test_placeholders_are_filled(self):
        subject, text_body, html_body = render_email("photographer_welcome", {"name": "Pat"})
        assert subject == "Welcome to PhotoVault, Pat"
        assert "Hi Pat," in text_body
        assert "https://photovault.photo/photographer/dashboard" in text_body
        assert html_body.startswith("<p>")

    def test_html_body_escapes_context(self):
        _, text_body, html_body = render_email("photographer_welcome", {"name": "<b>Pat</b>"})
        assert "<b>Pat</b>" in text_body
        assert "&lt;b&gt;Pat&lt;/b&gt;" in html_body

    def test_unsubscribe_footer_only_with_link(self):
        _, without, _ = render_email("client_getting_started", {"name": "Sam"})
        _, with_link, _ = render_email(
            "client_getting_started",
            {"name": "Sam", "unsubscribe_link": "https://api.photovault.photo/u?token=x"},
        )
        assert "Unsubscribe" not in without
        assert "Unsubscribe: https://api.photovault.photo/u?token=x" in with_link

    def test_unknown_template_raises(self):
        with pytest.raises(ValueError):
            render_email("nope")


class TestDelivery:
    async def test_unconfigured_provider_skips(self):
        assert email_service.email_is_configured() is False
        assert await send_email(to_email="a@b.test", subject="s", text_body="t") is False

    async def test_provider_error_raises(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test")
        reset_settings_cache()
        response = httpx.Response(422, text="invalid from")
        fake_client = AsyncMock()
        fake_client.__aenter__.return_value.post = AsyncMock(return_value=response)
        with patch("api.services.email_service.httpx.AsyncClient", return_value=fake_client):
            with pytest.raises(EmailDeliveryError, match="422"):
                await send_email(to_email="a@b.test", subject="s", text_body="t")

    async def test_successful_send(self, monkeypatch):
        monkeypatch.setenv("RESEND_API_KEY", "re_test")
        reset_settings_cache()
        post = AsyncMock(return_value=httpx.Response(200, json={"id": "email_1"}))
        fake_client = AsyncMock()
        fake_client.__aenter__.return_value.post = post
        with patch("api.services.email_service.httpx.AsyncClient", return_value=fake_client):
            assert await send_email(to_email="A@B.test", subject="s", text_body="t") is True
        assert post.await_args.kwargs["json"]["to"] == ["a@b.test"]
