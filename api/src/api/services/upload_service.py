"""Chunked uploads tracked by an explicit manifest."""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

from photovault.config import get_settings
from photovault.models import UploadManifest
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from api.errors import Conflict, NotFound, ValidationError
from api.services import side_effects, storage_service

logger = logging.getLogger(__name__)

MAX_CHUNK_BYTES = 10 * 1024 * 1024
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


def chunk_key(storage_path: str, index: int) -> str:
    return f"{storage_path}.part{index}"


def safe_filename(filename: str) -> str:
    cleaned = _UNSAFE_FILENAME.sub("_", filename.strip()).strip("._")
    return cleaned[:200] or "upload.bin"


def missing_chunks(manifest: UploadManifest) -> list[int]:
    received = set(manifest.received_chunks or [])
    return [index for index in range(manifest.total_chunks) if index not in received]


def serialize_manifest(manifest: UploadManifest) -> dict:
    received = sorted(set(manifest.received_chunks or []))
    return {
        "upload_id": str(manifest.id),
        "storage_path": manifest.storage_path,
        "total_chunks": manifest.total_chunks,
        "received_chunks": received,
        "missing_chunks": missing_chunks(manifest),
        "completed": manifest.completed_at is not None,
        "completed_at": manifest.completed_at.isoformat() if manifest.completed_at else None,
    }


async def create_manifest(
    db: AsyncSession, owner_id: uuid.UUID, filename: str, total_chunks: int
) -> UploadManifest:
    settings = get_settings()
    if total_chunks < 1 or total_chunks > settings.upload_max_chunks:
        raise ValidationError(f"total_chunks must be between 1 and {settings.upload_max_chunks}")
    upload_id = uuid.uuid4()
    manifest = UploadManifest(
        id=upload_id,
        owner_id=owner_id,
        storage_path=f"{owner_id}/{upload_id}/{safe_filename(filename)}",
        total_chunks=total_chunks,
        received_chunks=[],
    )
    db.add(manifest)
    await db.flush()
    return manifest


async def get_manifest(
    db: AsyncSession, upload_id: uuid.UUID, owner_id: uuid.UUID, *, lock: bool = False
) -> UploadManifest:
    stmt = select(UploadManifest).where(
        UploadManifest.id == upload_id, UploadManifest.owner_id == owner_id
    )
    if lock:
        stmt = stmt.with_for_update()
    manifest = (await db.execute(stmt)).scalars().first()
    if manifest is None:
        raise NotFound("Upload not found")
    return manifest


async def store_chunk(
    db: AsyncSession, manifest: UploadManifest, index: int, data: bytes
) -> UploadManifest:
    if manifest.completed_at is not None:
        raise Conflict("Upload is already complete")
    if index < 0 or index >= manifest.total_chunks:
        raise ValidationError(f"Chunk index must be between 0 and {manifest.total_chunks - 1}")
    if not data:
        raise ValidationError("Chunk body is empty")
    if len(data) > MAX_CHUNK_BYTES:
        raise ValidationError(f"Chunk exceeds {MAX_CHUNK_BYTES} bytes")

    bucket = get_settings().upload_bucket
    await storage_service.upload(bucket, chunk_key(manifest.storage_path, index), data)

    # Concurrent chunk requests append without read-modify-write races.
    await db.execute(
        update(UploadManifest)
        .where(UploadManifest.id == manifest.id, ~UploadManifest.received_chunks.any(index))
        .values(received_chunks=func.array_append(UploadManifest.received_chunks, index))
    )
    await db.refresh(manifest)
    return manifest


async def _chunk_stream(bucket: str, manifest: UploadManifest) -> AsyncIterator[bytes]:
    for index in range(manifest.total_chunks):
        yield await storage_service.download(bucket, chunk_key(manifest.storage_path, index))


async def complete_upload(db: AsyncSession, manifest: UploadManifest) -> UploadManifest:
    """Merge all chunks into the final object. Idempotent once complete.

    The merged object is streamed so only one chunk is held in memory. Chunk
    objects are removed only after the completion has been committed.
    """
    if manifest.completed_at is not None:
        return manifest
    missing = missing_chunks(manifest)
    if missing:
        preview = ", ".join(str(index) for index in missing[:20])
        raise ValidationError(f"Upload is missing chunks: {preview}")

    bucket = get_settings().upload_bucket
    await storage_service.upload_stream(
        bucket, manifest.storage_path, _chunk_stream(bucket, manifest)
    )

    manifest.completed_at = datetime.now(UTC)
    await db.commit()
    logger.info("Upload %s merged from %d chunks", manifest.id, manifest.total_chunks)

    keys = [chunk_key(manifest.storage_path, i) for i in range(manifest.total_chunks)]

    async def _remove_chunks() -> None:
        await storage_service.remove(bucket, keys)

    side_effects.dispatch(f"upload_chunk_cleanup:{manifest.id}", _remove_chunks)
    return manifest


async def purge_abandoned_uploads(db: AsyncSession, *, older_than: timedelta) -> int:
    """Delete incomplete manifests (and their chunks) older than ``older_than``."""
    cutoff = datetime.now(UTC) - older_than
    result = await db.execute(
        select(UploadManifest).where(
            UploadManifest.completed_at.is_(None), UploadManifest.created_at < cutoff
        )
    )
    manifests = list(result.scalars().all())
    if not manifests:
        return 0
    bucket = get_settings().upload_bucket
    for manifest in manifests:
        keys = [chunk_key(manifest.storage_path, i) for i in set(manifest.received_chunks or [])]
        await storage_service.remove(bucket, keys)
    await db.execute(
        delete(UploadManifest).where(UploadManifest.id.in_([m.id for m in manifests]))
    )
    logger.info("Purged %d abandoned uploads", len(manifests))
    return len(manifests)
