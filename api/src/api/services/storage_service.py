"""Object storage (Supabase Storage REST API)."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from urllib.parse import quote

import httpx
from photovault.config import get_settings

from api.errors import NotFound, UpstreamUnavailable

logger = logging.getLogger(__name__)

TRANSFER_TIMEOUT_SECONDS = 60.0


def _object_url(bucket: str, key: str | None = None) -> str:
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise UpstreamUnavailable("Object storage is not configured")
    base = f"{settings.supabase_url.rstrip('/')}/storage/v1/object/{quote(bucket)}"
    return f"{base}/{quote(key)}" if key else base


def _headers(extra: dict[str, str] | None = None) -> dict[str, str]:
    key = get_settings().supabase_service_role_key
    headers = {"apikey": key, "Authorization": f"Bearer {key}"}
    if extra:
        headers.update(extra)
    return headers


async def _request(method: str, url: str, **kwargs) -> httpx.Response:
    try:
        async with httpx.AsyncClient(timeout=TRANSFER_TIMEOUT_SECONDS) as client:
            resp = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise UpstreamUnavailable("Object storage unreachable") from exc
    if resp.status_code >= 500:
        raise UpstreamUnavailable(f"Object storage error ({resp.status_code})")
    return resp


async def _post_object(bucket: str, key: str, content, content_type: str) -> None:
    resp = await _request(
        "POST",
        _object_url(bucket, key),
        content=content,
        headers=_headers({"Content-Type": content_type, "x-upsert": "true"}),
    )
    if resp.status_code >= 400:
        raise UpstreamUnavailable(f"Object storage rejected upload ({resp.status_code})")


async def upload(
    bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream"
) -> None:
    await _post_object(bucket, key, data, content_type)


async def upload_stream(
    bucket: str,
    key: str,
    parts: AsyncIterator[bytes],
    content_type: str = "application/octet-stream",
) -> None:
    """Upload from an async byte stream; the body is sent with chunked encoding."""
    await _post_object(bucket, key, parts, content_type)


async def download(bucket: str, key: str) -> bytes:
    resp = await _request("GET", _object_url(bucket, key), headers=_headers())
    if resp.status_code in (400, 404):
        raise NotFound(f"Stored object not found: {key}")
    if resp.status_code >= 400:
        raise UpstreamUnavailable(f"Object storage rejected download ({resp.status_code})")
    return resp.content


async def remove(bucket: str, keys: list[str]) -> None:
    if not keys:
        return
    resp = await _request(
        "DELETE", _object_url(bucket), json={"prefixes": keys}, headers=_headers()
    )
    if resp.status_code >= 400:
        logger.warning("Object storage remove returned %s for %d keys", resp.status_code, len(keys))
