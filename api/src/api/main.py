"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from pathlib import Path

from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from photovault.config import get_settings
from photovault.database import close_engine, get_engine
from sqlalchemy import text

from api.errors import register_exception_handlers
from api.middleware.csrf import CSRFMiddleware
from api.routers import (
    admin,
    admin_webhooks,
    auth,
    client,
    cron,
    email,
    health,
    photographer,
    stripe_webhook,
    uploads,
)
from api.services import side_effects
from api.services.maintenance import run_maintenance_worker

logger = logging.getLogger(__name__)


async def _assert_database_revision_current() -> None:
    settings = get_settings()
    if settings.skip_migration_check:
        return

    repo_root = Path(__file__).resolve().parents[3]
    alembic_ini = repo_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found; skipping migration revision check")
        return

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str(repo_root / "alembic"))
    script = ScriptDirectory.from_config(alembic_cfg)
    expected_heads = set(script.get_heads())
    if not expected_heads:
        return

    engine = get_engine()
    try:
        async with engine.connect() as connection:
            result = await connection.execute(text("SELECT version_num FROM alembic_version"))
            current_revisions = {str(row[0]) for row in result.fetchall() if row and row[0]}
    except Exception as exc:
        raise RuntimeError(
            "Database migration revision check failed. "
            "Run `alembic upgrade head` before starting the API."
        ) from exc

    if current_revisions != expected_heads:
        raise RuntimeError(
            "Database schema revision mismatch: "
            f"db={sorted(current_revisions)} expected={sorted(expected_heads)}. "
            "Run `alembic upgrade head`."
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    maintenance_stop_event: asyncio.Event | None = None
    maintenance_task: asyncio.Task | None = None
    try:
        await _assert_database_revision_current()
        maintenance_stop_event = asyncio.Event()
        maintenance_task = asyncio.create_task(run_maintenance_worker(maintenance_stop_event))
        yield
    finally:
        if maintenance_stop_event is not None:
            maintenance_stop_event.set()
        if maintenance_task is not None:
            try:
                await asyncio.wait_for(maintenance_task, timeout=5)
            except Exception:
                maintenance_task.cancel()
                with suppress(Exception):
                    await maintenance_task
        await side_effects.drain()
        await close_engine()


def _warn_insecure_defaults() -> None:
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET is empty; webhooks will be refused")
    if not settings.supabase_jwt_secret and not settings.supabase_url:
        logger.warning("SUPABASE_JWT_SECRET and SUPABASE_URL are empty; sessions cannot resolve")
    if not settings.cron_secret:
        logger.warning("CRON_SECRET is empty; the drip cron endpoint is unauthenticated")
    if not settings.admin_email_set:
        logger.info("ADMIN_EMAILS is empty; admin access comes from profile roles only")


def create_app() -> FastAPI:
    app = FastAPI(title="PhotoVault API", version="0.1.0", lifespan=lifespan)
    settings = get_settings()
    _warn_insecure_defaults()
    allowed_origins = [settings.site_url]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CSRFMiddleware)
    register_exception_handlers(app)
    app.include_router(health.router, tags=["health"])
    app.include_router(auth.router, prefix="/v1/auth", tags=["auth"])
    app.include_router(photographer.router, prefix="/v1/photographer", tags=["photographer"])
    app.include_router(client.router, prefix="/v1/client", tags=["client"])
    app.include_router(admin.router, prefix="/v1/admin", tags=["admin"])
    app.include_router(admin_webhooks.router, prefix="/v1/admin/webhooks", tags=["admin"])
    app.include_router(stripe_webhook.router, prefix="/v1/stripe", tags=["stripe"])
    app.include_router(cron.router, prefix="/v1/cron", tags=["cron"])
    app.include_router(email.router, prefix="/v1/email", tags=["email"])
    app.include_router(uploads.router, prefix="/v1/upload", tags=["upload"])
    return app


app = create_app()
