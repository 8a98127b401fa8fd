"""Tests for the analysis orchestrator.

Covers the worked charge scenarios end to end (submit, background
processing, cache hit), idempotent retries, free-quota handling, request
rejection without side effects and compensation when the analysis record
cannot be stored.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.core.errors import (
    ConflictError,
    InputTooLargeError,
    InsufficientCreditsError,
    PersistenceError,
    QuotaExhaustedError,
    UpgradeRequiredError,
    ValidationError,
)
from messagemind.repositories.account_repository import AccountRepository
from messagemind.repositories.analysis_repository import AnalysisRepository
from messagemind.repositories.idempotency_repository import IdempotencyRepository
from messagemind.repositories.ledger_repository import LedgerRepository
from messagemind.services.analysis_orchestrator import (
    AnalysisOrchestrator,
    AnalysisSubmission,
)
from messagemind.services.analysis_processor import AnalysisDispatcher
from messagemind.services.fingerprint import AnalysisCache
from messagemind.services.ledger import Ledger
from messagemind.services.pricing import AnalysisMode, AnalysisToggles, PricingConfig

_TEXT_150 = "hey! " * 30


@pytest.fixture
def orchestrator(
    db_session: AsyncSession,
    pricing: PricingConfig,
    dispatcher: AnalysisDispatcher,
) -> AnalysisOrchestrator:
    """Orchestrator with caching enabled."""
    return AnalysisOrchestrator(
        db_session,
        pricing=pricing,
        dispatcher=dispatcher,
        cache=AnalysisCache(retention_days=30),
    )


async def _spend_count(db: AsyncSession, account_id: uuid.UUID) -> int:
    _, total = await LedgerRepository.list_by_account(
        db, account_id, kind="action_spend"
    )
    return total


# =============================================================================
# Charge scenarios
# =============================================================================


class TestSubmitScenarios:
    """Queued analyses are charged once; cache hits are free."""

    async def test_pro_short_text_charges_five(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """Pro, 150 chars: 202, 5 credits, balance 95."""
        account = await make_account("pro", balance=100)

        result = await orchestrator.submit(
            account.id, AnalysisSubmission(input_text=_TEXT_150)
        )
        await dispatcher.drain()

        assert result.status_code == 202
        assert result.body["status"] == "queued"
        assert result.body["credits_charged"] == 5
        assert result.body["credits_remaining"] == 95
        assert result.body["resolved_mode"] == "snapshot"
        assert result.body["breakdown"]["text"] == 5
        assert result.body["cached"] is False
        assert await AccountRepository.get_balance(db_session, account.id) == 95

        record = await AnalysisRepository.get_by_id(
            db_session, uuid.UUID(result.body["analysis_id"])
        )
        assert record is not None
        assert record.status == "done"
        assert record.credits_charged == 5
        assert record.spend_entry_id is not None

    async def test_plus_deep_toggle_charges_surcharge(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        make_account,
    ) -> None:
        """Plus, 300 chars, deep toggle: 24 credits, deep mode."""
        account = await make_account("plus", balance=180)

        result = await orchestrator.submit(
            account.id,
            AnalysisSubmission(
                input_text="a" * 300, toggles=AnalysisToggles(deep=True)
            ),
        )
        await dispatcher.drain()

        assert result.body["resolved_mode"] == "deep"
        assert result.body["credits_charged"] == 24
        assert result.body["credits_remaining"] == 156

    async def test_repeat_request_is_served_from_cache(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """The same message again returns 200 with nothing charged."""
        account = await make_account("pro", balance=100)
        first = await orchestrator.submit(
            account.id, AnalysisSubmission(input_text=_TEXT_150)
        )
        await dispatcher.drain()

        second = await orchestrator.submit(
            account.id, AnalysisSubmission(input_text="  HEY! " + _TEXT_150[5:])
        )

        assert second.status_code == 200
        assert second.body["cached"] is True
        assert second.body["credits_charged"] == 0
        assert second.body["credits_remaining"] == 95
        assert second.body["analysis_id"] == first.body["analysis_id"]
        assert second.body["result"]["tone"] == "friendly"
        assert await AccountRepository.get_balance(db_session, account.id) == 95
        assert await _spend_count(db_session, account.id) == 1

    async def test_recompute_bypasses_cache(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        make_account,
    ) -> None:
        """recompute=True charges for a fresh analysis."""
        account = await make_account("pro", balance=100)
        await orchestrator.submit(account.id, AnalysisSubmission(input_text=_TEXT_150))
        await dispatcher.drain()

        again = await orchestrator.submit(
            account.id, AnalysisSubmission(input_text=_TEXT_150, recompute=True)
        )
        await dispatcher.drain()

        assert again.status_code == 202
        assert again.body["credits_remaining"] == 90

    async def test_failed_analysis_is_not_cached(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        mock_llm,
        make_account,
    ) -> None:
        """Only completed results are reused."""
        account = await make_account("pro", balance=100)
        mock_llm.set_error(RuntimeError("down"))
        await orchestrator.submit(account.id, AnalysisSubmission(input_text=_TEXT_150))
        await dispatcher.drain()
        mock_llm.set_error(None)

        again = await orchestrator.submit(
            account.id, AnalysisSubmission(input_text=_TEXT_150)
        )
        await dispatcher.drain()

        assert again.status_code == 202
        assert again.body["credits_remaining"] == 95

    async def test_stale_balance_is_reset_first(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        make_account,
    ) -> None:
        """A new day restores the allowance before pricing."""
        account = await make_account(
            "pro",
            balance=2,
            last_daily_reset_at=datetime.now(UTC) - timedelta(days=2),
        )

        result = await orchestrator.submit(
            account.id, AnalysisSubmission(input_text=_TEXT_150)
        )
        await dispatcher.drain()

        assert result.body["credits_remaining"] == 95


# =============================================================================
# Free tier
# =============================================================================


class TestFreeTier:
    """One free snapshot per month."""

    async def test_first_analysis_uses_quota(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """The free analysis is queued and nothing is debited."""
        account = await make_account("free", balance=0)

        result = await orchestrator.submit(
            account.id, AnalysisSubmission(input_text="want to get coffee?")
        )
        await dispatcher.drain()

        assert result.status_code == 202
        assert result.body["credits_charged"] == 0
        assert result.body["breakdown"]["nominal"] == 1
        refreshed = await AccountRepository.get_by_id(db_session, account.id)
        assert refreshed is not None
        assert refreshed.free_monthly_uses == 1

    async def test_second_analysis_is_exhausted(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        make_account,
    ) -> None:
        """The monthly quota is one analysis."""
        account = await make_account("free", balance=0)
        await orchestrator.submit(
            account.id, AnalysisSubmission(input_text="want to get coffee?")
        )
        await dispatcher.drain()

        with pytest.raises(QuotaExhaustedError):
            await orchestrator.submit(
                account.id, AnalysisSubmission(input_text="different message")
            )

    async def test_free_deep_request_requires_upgrade(
        self, orchestrator: AnalysisOrchestrator, make_account
    ) -> None:
        """Free accounts cannot request other modes."""
        account = await make_account("free", balance=0)

        with pytest.raises(UpgradeRequiredError):
            await orchestrator.submit(
                account.id,
                AnalysisSubmission(input_text="hi", mode=AnalysisMode.EXPANDED),
            )


# =============================================================================
# Rejections
# =============================================================================


class TestRejections:
    """Invalid requests are rejected before anything is written."""

    async def test_empty_input(
        self,
        orchestrator: AnalysisOrchestrator,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """Whitespace-only text and no images is a validation error."""
        account = await make_account()

        with pytest.raises(ValidationError):
            await orchestrator.submit(account.id, AnalysisSubmission(input_text="   "))

        assert await _spend_count(db_session, account.id) == 0

    async def test_input_too_large(
        self, orchestrator: AnalysisOrchestrator, make_account
    ) -> None:
        """Text plus image placeholders above the maximum is rejected."""
        account = await make_account("plus", balance=180)

        with pytest.raises(InputTooLargeError) as exc_info:
            await orchestrator.submit(
                account.id,
                AnalysisSubmission(input_text="a" * 1500, images=("img-1",)),
            )
        assert exc_info.value.status_code == 413
        assert exc_info.value.details == [{"max_chars": 2000, "actual_chars": 2500}]

    async def test_images_require_upgrade_on_pro(
        self, orchestrator: AnalysisOrchestrator, make_account
    ) -> None:
        """Pro cannot attach screenshots."""
        account = await make_account("pro")

        with pytest.raises(UpgradeRequiredError) as exc_info:
            await orchestrator.submit(
                account.id, AnalysisSubmission(images=("img-1",))
            )
        assert exc_info.value.details == [{"tier": "pro", "feature": "images"}]

    async def test_deep_mode_requires_upgrade_on_pro(
        self, orchestrator: AnalysisOrchestrator, make_account
    ) -> None:
        """Pro cannot request deep mode explicitly."""
        account = await make_account("pro")

        with pytest.raises(UpgradeRequiredError):
            await orchestrator.submit(
                account.id,
                AnalysisSubmission(input_text="hi", mode=AnalysisMode.DEEP),
            )

    async def test_insufficient_credits_writes_nothing(
        self,
        orchestrator: AnalysisOrchestrator,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """A balance below the charge leaves everything untouched."""
        account = await make_account("pro", balance=3)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await orchestrator.submit(
                account.id, AnalysisSubmission(input_text=_TEXT_150)
            )

        assert exc_info.value.credits_remaining == 3
        assert exc_info.value.credits_needed == 5
        assert await AccountRepository.get_balance(db_session, account.id) == 3
        _, analyses = await AnalysisRepository.list_by_account(db_session, account.id)
        assert analyses == 0


# =============================================================================
# Idempotency
# =============================================================================


class TestIdempotency:
    """Repeated keys replay the first response."""

    async def test_replay_returns_first_response(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """The second submission is a replay with a single charge."""
        account = await make_account("pro", balance=100)
        submission = AnalysisSubmission(
            input_text=_TEXT_150, idempotency_key="req-1", recompute=True
        )

        first = await orchestrator.submit(account.id, submission)
        await dispatcher.drain()
        second = await orchestrator.submit(account.id, submission)

        assert first.replayed is False
        assert second.replayed is True
        assert second.status_code == first.status_code == 202
        assert second.body == first.body
        assert await _spend_count(db_session, account.id) == 1
        assert await AccountRepository.get_balance(db_session, account.id) == 95

    async def test_pending_claim_is_conflict(
        self,
        orchestrator: AnalysisOrchestrator,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """A key claimed by an in-flight request cannot be reused yet."""
        account = await make_account()
        await IdempotencyRepository.claim(
            db_session,
            account_id=account.id,
            key="req-2",
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )
        await db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            await orchestrator.submit(
                account.id,
                AnalysisSubmission(input_text="hi", idempotency_key="req-2"),
            )
        assert exc_info.value.code == "IDEMPOTENCY_IN_PROGRESS"

    async def test_expired_claim_is_replaced(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """An expired claim no longer blocks the key."""
        account = await make_account()
        await IdempotencyRepository.claim(
            db_session,
            account_id=account.id,
            key="req-3",
            expires_at=datetime.now(UTC) - timedelta(minutes=1),
        )
        await db_session.commit()

        result = await orchestrator.submit(
            account.id,
            AnalysisSubmission(input_text="hi", idempotency_key="req-3"),
        )
        await dispatcher.drain()

        assert result.status_code == 202

    async def test_rejected_request_releases_key(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        db_session: AsyncSession,
        make_account,
    ) -> None:
        """After a 402 the client can retry with the same key."""
        account = await make_account("pro", balance=3)
        submission = AnalysisSubmission(input_text=_TEXT_150, idempotency_key="req-4")

        with pytest.raises(InsufficientCreditsError):
            await orchestrator.submit(account.id, submission)

        await Ledger(db_session).credit(account.id, 10, "purchase")
        await db_session.commit()
        result = await orchestrator.submit(account.id, submission)
        await dispatcher.drain()

        assert result.status_code == 202
        assert result.body["credits_remaining"] == 8

    async def test_failed_response_store_still_returns_result(
        self,
        orchestrator: AnalysisOrchestrator,
        dispatcher: AnalysisDispatcher,
        db_session: AsyncSession,
        make_account,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """The charged submission is returned even if its replay copy is lost."""

        async def _fail_store(*args, **kwargs):
            raise SQLAlchemyError("connection reset")

        monkeypatch.setattr(IdempotencyRepository, "store_response", _fail_store)
        account = await make_account("pro", balance=100)
        submission = AnalysisSubmission(input_text=_TEXT_150, idempotency_key="req-5")

        with caplog.at_level(logging.ERROR):
            result = await orchestrator.submit(account.id, submission)
        await dispatcher.drain()

        assert result.status_code == 202
        assert result.body["credits_charged"] == 5
        assert any(
            r.levelno == logging.ERROR and "Could not store response" in r.getMessage()
            for r in caplog.records
        )
        with pytest.raises(ConflictError):
            await orchestrator.submit(account.id, submission)
        assert await _spend_count(db_session, account.id) == 1
        assert await AccountRepository.get_balance(db_session, account.id) == 95


# =============================================================================
# Persistence failure
# =============================================================================


class TestPersistenceFailure:
    """A record that cannot be stored never keeps the charge."""

    async def test_charge_is_refunded(
        self,
        orchestrator: AnalysisOrchestrator,
        db_session: AsyncSession,
        make_account,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """The reserve is reversed and a 503 is raised."""

        async def _fail_create(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(AnalysisRepository, "create", _fail_create)
        account = await make_account("pro", balance=100)

        with pytest.raises(PersistenceError):
            await orchestrator.submit(
                account.id, AnalysisSubmission(input_text=_TEXT_150)
            )

        assert await AccountRepository.get_balance(db_session, account.id) == 100
        refunds, total = await LedgerRepository.list_by_account(
            db_session, account.id, kind="refund"
        )
        assert total == 1
        assert refunds[0].detail["reason"] == "persistence_error"

    async def test_free_quota_is_restored(
        self,
        orchestrator: AnalysisOrchestrator,
        db_session: AsyncSession,
        make_account,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A free use is given back when the record cannot be stored."""

        async def _fail_create(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(AnalysisRepository, "create", _fail_create)
        account = await make_account("free", balance=0)

        with pytest.raises(PersistenceError):
            await orchestrator.submit(account.id, AnalysisSubmission(input_text="hi"))

        refreshed = await AccountRepository.get_by_id(db_session, account.id)
        assert refreshed is not None
        assert refreshed.free_monthly_uses == 0

    async def test_failed_compensation_is_logged_critical(
        self,
        orchestrator: AnalysisOrchestrator,
        make_account,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """If the refund also fails, the loss is logged for reconciliation."""

        async def _fail_create(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        async def _fail_refund(self, *args, **kwargs):
            raise SQLAlchemyError("still down")

        monkeypatch.setattr(AnalysisRepository, "create", _fail_create)
        monkeypatch.setattr(Ledger, "refund", _fail_refund)
        account = await make_account("pro", balance=100)

        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(PersistenceError):
                await orchestrator.submit(
                    account.id, AnalysisSubmission(input_text=_TEXT_150)
                )

        critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
        assert len(critical) == 1
        assert str(account.id) in critical[0].getMessage()
        assert "amount=5" in critical[0].getMessage()
