"""Tests for drip scheduling, delivery outcomes and the batch runner."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from api.services import drip_service
from api.services.drip_service import (
    SEQUENCES,
    DripBatchResult,
    enroll,
    next_failure_state,
    photographer_progress_line,
    run_drip_batch,
    scheduled_time,
)
from api.services.email_service import EmailDeliveryError
from api.services.email_template_service import EMAIL_TEMPLATES
from photovault.models import DripEmail, DripSequence, UserProfile


def test_scheduled_time_lands_on_send_hour():
    start = datetime(2026, 3, 1, 22, 47, 13, tzinfo=UTC)
    assert scheduled_time(start, 1) == datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
    assert scheduled_time(start, 7) == datetime(2026, 3, 8, 10, 0, tzinfo=UTC)


def test_every_sequence_step_has_a_template():
    for steps in SEQUENCES.values():
        for step in steps:
            assert step.template_name in EMAIL_TEMPLATES


@pytest.mark.parametrize(
    "retry_count,expected",
    [(0, (1, "failed")), (1, (2, "failed")), (2, (3, "dead")), (5, (6, "dead"))],
)
def test_next_failure_state(retry_count: int, expected: tuple[int, str]):
    assert next_failure_state(retry_count, 3) == expected


def test_progress_line_for_fresh_signup():
    line = photographer_progress_line(False, False, False)
    assert "haven't connected Stripe" in line


async def test_enroll_rejects_unknown_sequence():
    with pytest.raises(ValueError):
        await enroll(AsyncMock(), uuid.uuid4(), "no_such_sequence")


async def test_enroll_is_once_per_sequence():
    db = AsyncMock()
    db.add = MagicMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    db.execute.return_value = result

    assert await enroll(db, uuid.uuid4(), "photographer_post_signup") is False
    db.add.assert_not_called()


async def test_enroll_schedules_every_step():
    db = AsyncMock()
    db.add = MagicMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = uuid.uuid4()
    db.execute.return_value = result
    start = datetime(2026, 5, 4, 8, 0, tzinfo=UTC)

    assert await enroll(db, uuid.uuid4(), "client_post_payment", now=start) is True

    emails = [call.args[0] for call in db.add.call_args_list]
    assert [email.step_number for email in emails] == [1, 2, 3]
    assert emails[0].scheduled_for == datetime(2026, 5, 5, 10, 0, tzinfo=UTC)
    assert all(email.status == "pending" for email in emails)


def _session_factory(db):
    @asynccontextmanager
    async def _get_session():
        yield db

    return _get_session


def _claimed_email(retry_count: int = 0) -> DripEmail:
    return DripEmail(
        id=uuid.uuid4(),
        sequence_id=uuid.uuid4(),
        step_number=1,
        template_name="client_getting_started",
        scheduled_for=datetime.now(UTC),
        status="sending",
        retry_count=retry_count,
        claimed_at=datetime.now(UTC),
    )


def _process_db(email: DripEmail, sequence: DripSequence | None) -> AsyncMock:
    db = AsyncMock()
    db.begin_nested = MagicMock()
    db.get.side_effect = lambda model, _id: email if model is DripEmail else sequence
    return db


class TestProcessClaimed:
    async def test_failure_at_retry_limit_is_dead(self):
        email = _claimed_email(retry_count=2)
        sequence = DripSequence(id=email.sequence_id, user_id=uuid.uuid4(), suppressed=False)
        db = _process_db(email, sequence)

        with (
            patch.object(drip_service, "get_session", _session_factory(db)),
            patch.object(
                drip_service, "_deliver", new=AsyncMock(side_effect=EmailDeliveryError("boom"))
            ),
        ):
            outcome = await drip_service._process_claimed(
                email.id, datetime.now(UTC), max_retries=3
            )

        assert outcome == "failed"
        assert email.status == "dead"
        assert email.retry_count == 3
        assert email.claimed_at is None
        assert email.skip_reason.startswith("Max retries exceeded")

    async def test_failure_below_limit_is_retryable(self):
        email = _claimed_email(retry_count=0)
        sequence = DripSequence(id=email.sequence_id, user_id=uuid.uuid4(), suppressed=False)
        db = _process_db(email, sequence)

        with (
            patch.object(drip_service, "get_session", _session_factory(db)),
            patch.object(
                drip_service, "_deliver", new=AsyncMock(side_effect=EmailDeliveryError("boom"))
            ),
        ):
            await drip_service._process_claimed(email.id, datetime.now(UTC), max_retries=3)

        assert email.status == "failed"
        assert email.retry_count == 1

    async def test_sent_email_is_marked(self):
        email = _claimed_email()
        sequence = DripSequence(id=email.sequence_id, user_id=uuid.uuid4(), suppressed=False)
        db = _process_db(email, sequence)
        now = datetime.now(UTC)

        with (
            patch.object(drip_service, "get_session", _session_factory(db)),
            patch.object(drip_service, "_deliver", new=AsyncMock(return_value=("sent", None))),
        ):
            outcome = await drip_service._process_claimed(email.id, now, max_retries=3)

        assert outcome == "sent"
        assert email.status == "sent"
        assert email.sent_at == now

    async def test_email_no_longer_claimed_is_left_alone(self):
        email = _claimed_email()
        email.status = "sent"
        db = _process_db(email, None)
        with patch.object(drip_service, "get_session", _session_factory(db)):
            outcome = await drip_service._process_claimed(
                email.id, datetime.now(UTC), max_retries=3
            )
        assert outcome == "skipped"
        assert email.status == "sent"


class TestDeliver:
    async def test_suppressed_sequence_is_skipped(self):
        sequence = DripSequence(id=uuid.uuid4(), user_id=uuid.uuid4(), suppressed=True)
        outcome = await drip_service._deliver(AsyncMock(), _claimed_email(), sequence)
        assert outcome == ("skipped", "sequence_suppressed")

    async def test_missing_user_email_is_skipped(self):
        sequence = DripSequence(id=uuid.uuid4(), user_id=uuid.uuid4(), suppressed=False)
        db = AsyncMock()
        db.get.return_value = UserProfile(id=sequence.user_id, user_type="client", email=None)
        outcome = await drip_service._deliver(db, _claimed_email(), sequence)
        assert outcome == ("skipped", "no_user_email")

    async def test_stripe_nudge_skipped_once_connected(self):
        sequence = DripSequence(
            id=uuid.uuid4(),
            user_id=uuid.uuid4(),
            suppressed=False,
            unsubscribe_token=uuid.uuid4(),
            metadata_json={},
        )
        db = AsyncMock()
        db.get.return_value = UserProfile(
            id=sequence.user_id,
            user_type="photographer",
            email="pat@photovault.test",
            stripe_connect_account_id="acct_1",
        )
        email = _claimed_email()
        email.template_name = "photographer_stripe_nudge"
        progress = {
            "stripe_connected": True,
            "has_galleries": False,
            "has_invited_clients": False,
            "has_commission": False,
        }
        with patch.object(
            drip_service, "_photographer_progress", new=AsyncMock(return_value=progress)
        ):
            outcome = await drip_service._deliver(db, email, sequence)
        assert outcome == ("skipped", "stripe_already_connected")


class TestRunDripBatch:
    async def test_unconfigured_email_is_a_no_op(self):
        with (
            patch.object(drip_service, "email_is_configured", return_value=False),
            patch.object(drip_service, "_claim_batch", new=AsyncMock()) as claim,
        ):
            result = await run_drip_batch()
        assert result == DripBatchResult()
        claim.assert_not_awaited()

    async def test_counts_outcomes(self):
        claimed = [uuid.uuid4() for _ in range(4)]
        outcomes = AsyncMock(side_effect=["sent", "skipped", "failed", "sent"])
        with (
            patch.object(drip_service, "email_is_configured", return_value=True),
            patch.object(drip_service, "_claim_batch", new=AsyncMock(return_value=claimed)),
            patch.object(drip_service, "_process_claimed", new=outcomes),
            patch.object(drip_service, "_release", new=AsyncMock()) as release,
            patch.object(drip_service, "_mark_completed_sequences", new=AsyncMock()) as mark,
        ):
            result = await run_drip_batch(now=datetime.now(UTC))

        assert result.as_dict() == {"processed": 4, "succeeded": 2, "failed": 1, "skipped": 1}
        release.assert_not_awaited()
        mark.assert_awaited_once()

    async def test_time_budget_releases_leftover_claims(self, monkeypatch):
        monkeypatch.setenv("DRIP_TIME_BUDGET_SECONDS", "10")
        drip_service.get_settings.cache_clear()
        claimed = [uuid.uuid4() for _ in range(3)]
        # One tick per budget check: 0s, 4s, then 12s exhausts the budget.
        clock = iter([100.0, 100.0, 104.0, 112.0])
        with (
            patch.object(drip_service, "email_is_configured", return_value=True),
            patch.object(drip_service, "_claim_batch", new=AsyncMock(return_value=claimed)),
            patch.object(drip_service, "time") as fake_time,
            patch.object(
                drip_service, "_process_claimed", new=AsyncMock(return_value="sent")
            ) as process,
            patch.object(drip_service, "_release", new=AsyncMock()) as release,
            patch.object(drip_service, "_mark_completed_sequences", new=AsyncMock()),
        ):
            fake_time.monotonic.side_effect = lambda: next(clock)
            result = await run_drip_batch(now=datetime.now(UTC))

        assert process.await_count == 2
        assert result.processed == 2
        release.assert_awaited_once_with(claimed[2:])

    async def test_nothing_due(self):
        with (
            patch.object(drip_service, "email_is_configured", return_value=True),
            patch.object(drip_service, "_claim_batch", new=AsyncMock(return_value=[])),
            patch.object(drip_service, "_mark_completed_sequences", new=AsyncMock()) as mark,
        ):
            result = await run_drip_batch()
        assert result.processed == 0
        mark.assert_not_awaited()


def test_stale_claim_window_is_positive():
    assert drip_service.STALE_CLAIM_AFTER > timedelta(0)
