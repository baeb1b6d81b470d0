"""Managed auth provider (Supabase GoTrue) client."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import httpx
from jose import JWTError, jwt
from photovault.config import get_settings

from api.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """An authenticated identity as asserted by the auth provider."""

    id: uuid.UUID
    email: str
    verified: bool


def _auth_headers(token: str | None = None, *, service: bool = False) -> dict[str, str]:
    settings = get_settings()
    key = settings.supabase_service_role_key if service else settings.supabase_anon_key
    headers = {"apikey": key}
    bearer = token or (key if service else "")
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    return headers


def _auth_url(path: str) -> str:
    settings = get_settings()
    if not settings.supabase_url:
        raise UpstreamUnavailable("Auth provider is not configured")
    return f"{settings.supabase_url.rstrip('/')}/auth/v1{path}"


def _principal_from_claims(claims: dict[str, Any]) -> Principal | None:
    try:
        user_id = uuid.UUID(str(claims.get("sub") or claims.get("id") or ""))
    except ValueError:
        return None
    email = str(claims.get("email") or "").strip().lower()
    if "email_confirmed_at" in claims:
        verified = bool(claims.get("email_confirmed_at"))
    else:
        metadata = claims.get("user_metadata") or {}
        verified = bool(metadata.get("email_verified", True)) and not claims.get("is_anonymous")
    return Principal(id=user_id, email=email, verified=verified)


def _decode_locally(token: str) -> Principal | None:
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError:
        return None
    return _principal_from_claims(claims)


async def verify_token(token: str) -> Principal | None:
    """Return the principal for a token, or None when it is invalid or expired.

    Raises UpstreamUnavailable when the provider cannot answer, so callers never
    mistake an outage for a signed-out user.
    """
    settings = get_settings()
    if settings.supabase_jwt_secret:
        return _decode_locally(token)

    url = _auth_url("/user")
    try:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout_seconds) as client:
            resp = await client.get(url, headers=_auth_headers(token))
    except httpx.TimeoutException as exc:
        raise UpstreamUnavailable("Auth provider timed out") from exc
    except httpx.HTTPError as exc:
        raise UpstreamUnavailable("Auth provider unreachable") from exc

    if resp.status_code >= 500:
        raise UpstreamUnavailable(f"Auth provider error ({resp.status_code})")
    if resp.status_code != 200:
        return None
    return _principal_from_claims(resp.json())


async def sign_out(token: str) -> None:
    """Revoke the provider session behind ``token``."""
    settings = get_settings()
    url = _auth_url("/logout")
    try:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout_seconds) as client:
            resp = await client.post(url, headers=_auth_headers(token))
    except httpx.HTTPError as exc:
        raise UpstreamUnavailable("Auth provider unreachable") from exc
    # 401/404 mean the session is already gone.
    if resp.status_code >= 500:
        raise UpstreamUnavailable(f"Auth provider error ({resp.status_code})")


async def check_health() -> str:
    """Probe the provider: ok, unreachable, error or not_configured."""
    settings = get_settings()
    if not settings.supabase_url:
        return "not_configured"
    try:
        async with httpx.AsyncClient(timeout=settings.upstream_timeout_seconds) as client:
            resp = await client.get(_auth_url("/health"), headers=_auth_headers())
    except (httpx.TimeoutException, httpx.ConnectError):
        return "unreachable"
    except httpx.HTTPError as exc:
        logger.warning("Auth provider health probe failed: %s", exc)
        return "error"
    return "ok" if resp.status_code < 500 else "error"
