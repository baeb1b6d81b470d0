"""Chunked upload sessions."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, require_photographer
from api.errors import ValidationError, ok
from api.services import upload_service
from api.services.access import Allow

router = APIRouter()


class UploadSessionRequest(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    total_chunks: int = Field(ge=1)


@router.post("/sessions")
async def create_session(
    req: UploadSessionRequest,
    access: Allow = Depends(require_photographer),
    db: AsyncSession = Depends(get_db),
):
    manifest = await upload_service.create_manifest(
        db, access.profile.id, req.filename, req.total_chunks
    )
    return ok(upload_service.serialize_manifest(manifest))


@router.put("/sessions/{upload_id}/chunks/{index}")
async def put_chunk(
    upload_id: uuid.UUID,
    index: int,
    request: Request,
    access: Allow = Depends(require_photographer),
    db: AsyncSession = Depends(get_db),
):
    manifest = await upload_service.get_manifest(db, upload_id, access.profile.id)
    length = request.headers.get("content-length")
    if length and length.isdigit() and int(length) > upload_service.MAX_CHUNK_BYTES:
        raise ValidationError(f"Chunk exceeds {upload_service.MAX_CHUNK_BYTES} bytes")
    data = await request.body()
    manifest = await upload_service.store_chunk(db, manifest, index, data)
    return ok(upload_service.serialize_manifest(manifest))


@router.get("/sessions/{upload_id}")
async def get_session(
    upload_id: uuid.UUID,
    access: Allow = Depends(require_photographer),
    db: AsyncSession = Depends(get_db),
):
    manifest = await upload_service.get_manifest(db, upload_id, access.profile.id)
    return ok(upload_service.serialize_manifest(manifest))


@router.post("/sessions/{upload_id}/complete")
async def complete_session(
    upload_id: uuid.UUID,
    access: Allow = Depends(require_photographer),
    db: AsyncSession = Depends(get_db),
):
    manifest = await upload_service.get_manifest(db, upload_id, access.profile.id, lock=True)
    manifest = await upload_service.complete_upload(db, manifest)
    return ok(upload_service.serialize_manifest(manifest))
