"""Drip email sequences: enrollment and the scheduled send batch."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from photovault.config import get_settings
from photovault.database import get_session
from photovault.models import DripEmail, DripSequence, Gallery, GalleryAccessGrant, UserProfile
from sqlalchemy import and_, case, exists, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.email_service import (
    EmailDeliveryError,
    email_is_configured,
    send_template_email,
)

logger = logging.getLogger(__name__)

SEND_HOUR_UTC = 10
STALE_CLAIM_AFTER = timedelta(minutes=15)
OPEN_STATUSES = ("pending", "sending", "failed")


@dataclass(frozen=True)
class DripStep:
    step_number: int
    template_name: str
    delay_days: int


SEQUENCES: dict[str, tuple[DripStep, ...]] = {
    "photographer_post_signup": (
        DripStep(1, "photographer_stripe_nudge", 1),
        DripStep(2, "photographer_gallery_nudge", 3),
        DripStep(3, "photographer_passive_income_math", 7),
        DripStep(4, "photographer_founder_checkin", 14),
    ),
    "client_post_payment": (
        DripStep(1, "client_getting_started", 1),
        DripStep(2, "client_why_storage_matters", 3),
        DripStep(3, "client_more_photographers", 7),
    ),
}


@dataclass
class DripBatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def scheduled_time(start: datetime, delay_days: int) -> datetime:
    """``delay_days`` after ``start``, at the morning send hour (UTC)."""
    target = start.astimezone(UTC) + timedelta(days=delay_days)
    return target.replace(hour=SEND_HOUR_UTC, minute=0, second=0, microsecond=0)


def next_failure_state(retry_count: int, max_retries: int) -> tuple[int, str]:
    retries = retry_count + 1
    return retries, ("dead" if retries >= max_retries else "failed")


def unsubscribe_link(token: uuid.UUID | str) -> str:
    return f"{get_settings().api_url.rstrip('/')}/v1/email/unsubscribe?token={token}"


async def enroll(
    db: AsyncSession,
    user_id: uuid.UUID,
    sequence_name: str,
    metadata: dict[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> bool:
    """Enroll a user once per sequence. Returns False when already enrolled."""
    steps = SEQUENCES.get(sequence_name)
    if steps is None:
        raise ValueError(f"Unknown drip sequence: {sequence_name}")

    stmt = (
        pg_insert(DripSequence)
        .values(user_id=user_id, sequence_name=sequence_name, metadata_json=metadata or {})
        .on_conflict_do_nothing(index_elements=["user_id", "sequence_name"])
        .returning(DripSequence.id)
    )
    sequence_id = (await db.execute(stmt)).scalar_one_or_none()
    if sequence_id is None:
        logger.info("User %s already enrolled in %s", user_id, sequence_name)
        return False

    start = now or datetime.now(UTC)
    for step in steps:
        db.add(
            DripEmail(
                sequence_id=sequence_id,
                step_number=step.step_number,
                template_name=step.template_name,
                scheduled_for=scheduled_time(start, step.delay_days),
                status="pending",
            )
        )
    await db.flush()
    logger.info("Enrolled user %s in %s (%d emails)", user_id, sequence_name, len(steps))
    return True


async def enroll_best_effort(
    db: AsyncSession,
    user_id: uuid.UUID,
    sequence_name: str,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Enroll inside a savepoint so a failure never undoes the caller's work."""
    try:
        async with db.begin_nested():
            return await enroll(db, user_id, sequence_name, metadata)
    except SQLAlchemyError:
        logger.exception("Drip enrollment failed for user %s in %s", user_id, sequence_name)
        return False


async def suppress_by_token(db: AsyncSession, token: uuid.UUID) -> bool:
    result = await db.execute(
        update(DripSequence)
        .where(DripSequence.unsubscribe_token == token)
        .values(suppressed=True)
    )
    return bool(result.rowcount)


def photographer_progress_line(
    stripe_connected: bool, has_galleries: bool, has_invited_clients: bool
) -> str:
    if not stripe_connected and not has_galleries:
        return (
            "It's been a week since you signed up. You haven't connected Stripe or uploaded "
            "a gallery yet, but it's not too late to get rolling."
        )
    if stripe_connected and not has_galleries:
        return (
            "You've got Stripe connected. Now let's get your first gallery uploaded so you "
            "can start earning."
        )
    if has_galleries and not has_invited_clients:
        return (
            "You've uploaded a gallery. The next step is sending that delivery link to "
            "your client."
        )
    return "You're fully set up and already ahead of most photographers on the platform."


def photographer_status_message(all_steps_done: bool, has_commission: bool) -> str:
    if all_steps_done and has_commission:
        return (
            "You've already earned your first commission. Every client you add from here "
            "builds on that."
        )
    if all_steps_done:
        return (
            "You've done everything right. Once your client pays, your first commission "
            "will appear in your dashboard."
        )
    return (
        "I noticed you haven't finished setting up yet. The sooner you connect Stripe and "
        "upload a gallery, the sooner the commission math starts working for you."
    )


async def _photographer_progress(db: AsyncSession, profile: UserProfile) -> dict[str, bool]:
    gallery_count, invited_count = (
        await db.execute(
            select(func.count(Gallery.id), func.count(Gallery.client_id)).where(
                Gallery.photographer_id == profile.id
            )
        )
    ).one()
    paid_count = (
        await db.execute(
            select(func.count(GalleryAccessGrant.id))
            .join(Gallery, Gallery.id == GalleryAccessGrant.gallery_id)
            .where(Gallery.photographer_id == profile.id, GalleryAccessGrant.status == "paid")
        )
    ).scalar_one()
    return {
        "stripe_connected": bool(profile.stripe_connect_account_id),
        "has_galleries": gallery_count > 0,
        "has_invited_clients": invited_count > 0,
        "has_commission": paid_count > 0,
    }


async def _deliver(
    db: AsyncSession, email: DripEmail, sequence: DripSequence
) -> tuple[str, str | None]:
    """Send one drip email. Returns (outcome, skip_reason); raises on delivery failure."""
    if sequence.suppressed:
        return "skipped", "sequence_suppressed"

    profile = await db.get(UserProfile, sequence.user_id)
    if profile is None or not profile.email:
        return "skipped", "no_user_email"
    if profile.disabled_at is not None:
        return "skipped", "account_disabled"

    metadata = sequence.metadata_json or {}
    context: dict[str, Any] = {
        "name": profile.full_name
        or metadata.get("photographer_name")
        or metadata.get("client_name")
        or "there",
        "unsubscribe_link": unsubscribe_link(sequence.unsubscribe_token),
    }

    template = email.template_name
    if template.startswith("photographer_"):
        progress = await _photographer_progress(db, profile)
        if template == "photographer_stripe_nudge" and progress["stripe_connected"]:
            return "skipped", "stripe_already_connected"
        if template == "photographer_gallery_nudge" and progress["has_galleries"]:
            return "skipped", "has_galleries"
        context["progress_line"] = photographer_progress_line(
            progress["stripe_connected"],
            progress["has_galleries"],
            progress["has_invited_clients"],
        )
        all_done = (
            progress["stripe_connected"]
            and progress["has_galleries"]
            and progress["has_invited_clients"]
        )
        context["status_message"] = photographer_status_message(
            all_done, progress["has_commission"]
        )

    sent = await send_template_email(
        to_email=profile.email, template_key=template, context=context
    )
    if not sent:
        raise EmailDeliveryError("Email delivery is not configured")
    return "sent", None


async def _claim_batch(now: datetime, *, limit: int, max_retries: int) -> list[uuid.UUID]:
    async with get_session() as db:
        result = await db.execute(
            select(DripEmail)
            .where(
                DripEmail.scheduled_for <= now,
                or_(
                    DripEmail.status == "pending",
                    and_(DripEmail.status == "failed", DripEmail.retry_count < max_retries),
                    and_(
                        DripEmail.status == "sending",
                        DripEmail.claimed_at < now - STALE_CLAIM_AFTER,
                    ),
                ),
            )
            .order_by(DripEmail.scheduled_for.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        emails = list(result.scalars().all())
        for email in emails:
            email.status = "sending"
            email.claimed_at = now
        return [email.id for email in emails]


async def _release(email_ids: list[uuid.UUID]) -> None:
    """Hand unprocessed claims back to the queue for the next run."""
    async with get_session() as db:
        await db.execute(
            update(DripEmail)
            .where(DripEmail.id.in_(email_ids), DripEmail.status == "sending")
            .values(
                status=case((DripEmail.retry_count > 0, "failed"), else_="pending"),
                claimed_at=None,
            )
        )


async def _process_claimed(email_id: uuid.UUID, now: datetime, *, max_retries: int) -> str:
    async with get_session() as db:
        email = await db.get(DripEmail, email_id)
        if email is None or email.status != "sending":
            return "skipped"
        sequence = await db.get(DripSequence, email.sequence_id)
        if sequence is None:
            email.status = "skipped"
            email.skipped_at = now
            email.skip_reason = "sequence_missing"
            return "skipped"

        try:
            async with db.begin_nested():
                outcome, reason = await _deliver(db, email, sequence)
        except Exception as exc:
            retries, status = next_failure_state(email.retry_count, max_retries)
            email.retry_count = retries
            email.status = status
            email.claimed_at = None
            email.skip_reason = f"Max retries exceeded: {exc}" if status == "dead" else None
            logger.warning("Drip email %s failed (retry %d): %s", email_id, retries, exc)
            return "failed"

        email.claimed_at = None
        if outcome == "skipped":
            email.status = "skipped"
            email.skipped_at = now
            email.skip_reason = reason
        else:
            email.status = "sent"
            email.sent_at = now
        return outcome


async def _mark_completed_sequences(now: datetime) -> None:
    open_emails = exists().where(
        DripEmail.sequence_id == DripSequence.id,
        DripEmail.status.in_(OPEN_STATUSES),
    )
    async with get_session() as db:
        await db.execute(
            update(DripSequence)
            .where(DripSequence.completed_at.is_(None), ~open_emails)
            .values(completed_at=now)
        )


async def run_drip_batch(*, now: datetime | None = None) -> DripBatchResult:
    """Send due drip emails within the configured batch size and time budget."""
    settings = get_settings()
    result = DripBatchResult()
    if not email_is_configured():
        logger.warning("Email delivery is not configured; drip batch not run")
        return result

    run_at = now or datetime.now(UTC)
    started = time.monotonic()
    claimed = await _claim_batch(
        run_at, limit=settings.drip_batch_size, max_retries=settings.drip_max_retries
    )
    if not claimed:
        logger.info("No drip emails due")
        return result

    for index, email_id in enumerate(claimed):
        if time.monotonic() - started >= settings.drip_time_budget_seconds:
            leftover = claimed[index:]
            await _release(leftover)
            logger.info("Drip time budget exhausted; %d emails left for next run", len(leftover))
            break
        outcome = await _process_claimed(email_id, run_at, max_retries=settings.drip_max_retries)
        result.processed += 1
        if outcome == "sent":
            result.succeeded += 1
        elif outcome == "failed":
            result.failed += 1
        else:
            result.skipped += 1

    await _mark_completed_sequences(run_at)
    logger.info(
        "Drip batch done: %d sent, %d skipped, %d failed",
        result.succeeded,
        result.skipped,
        result.failed,
    )
    return result
