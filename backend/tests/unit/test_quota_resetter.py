"""Tests for lazy daily and monthly resets."""

import asyncio
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from messagemind.models.ledger import LedgerEntry
from messagemind.repositories.account_repository import AccountRepository
from messagemind.repositories.ledger_repository import LedgerRepository
from messagemind.services.quota_resetter import (
    QuotaResetter,
    local_day_start,
    local_month_start,
    resolve_timezone,
)

_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


async def _reset_entries(db: AsyncSession, account_id) -> list[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry).where(
            LedgerEntry.account_id == account_id,
            LedgerEntry.kind == "daily_reset",
        )
    )
    return list(result.scalars().all())


# =============================================================================
# Calendar helpers
# =============================================================================


class TestCalendarHelpers:
    """Day and month boundaries in the account's timezone."""

    def test_utc_day_start(self) -> None:
        """UTC midnight of the same day."""
        assert local_day_start(_NOW, UTC) == datetime(2026, 3, 15, tzinfo=UTC)

    def test_day_start_east_of_utc(self) -> None:
        """Local midnight in Tokyo is 15:00 UTC the previous day."""
        tokyo = ZoneInfo("Asia/Tokyo")

        assert local_day_start(_NOW, tokyo) == datetime(2026, 3, 14, 15, tzinfo=UTC)

    def test_month_start_west_of_utc(self) -> None:
        """Local month start in New York, expressed in UTC."""
        new_york = ZoneInfo("America/New_York")
        now = datetime(2026, 2, 1, 2, 0, tzinfo=UTC)

        # Still January 31 locally
        assert local_month_start(now, new_york) == datetime(2026, 1, 1, 5, tzinfo=UTC)

    @pytest.mark.parametrize("name", [None, "", "UTC", "Not/AZone"])
    def test_resolve_timezone_falls_back_to_utc(self, name: str | None) -> None:
        """Missing and unknown names resolve to UTC."""
        assert resolve_timezone(name) is UTC


# =============================================================================
# Daily reset
# =============================================================================


class TestDailyReset:
    """Balance is overwritten with the allowance once per local day."""

    async def test_resets_to_allowance_and_records_delta(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """A stale marker resets the balance and books the signed delta."""
        account = await make_account(
            "pro",
            balance=37,
            last_daily_reset_at=_NOW - timedelta(days=1),
        )

        outcome = await QuotaResetter().apply(db_session, account, now=_NOW)
        await db_session.commit()

        assert outcome.daily_reset is True
        assert outcome.balance == 100
        assert await AccountRepository.get_balance(db_session, account.id) == 100
        entries = await _reset_entries(db_session, account.id)
        assert len(entries) == 1
        assert entries[0].amount == 63
        assert entries[0].balance_after == 100
        assert entries[0].detail == {"previous_balance": 37, "allowance": 100}

    async def test_reset_does_not_accumulate(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """Unspent credits above the allowance are not carried over."""
        account = await make_account(
            "pro",
            balance=140,
            last_daily_reset_at=_NOW - timedelta(days=1),
        )

        await QuotaResetter().apply(db_session, account, now=_NOW)
        await db_session.commit()

        assert await AccountRepository.get_balance(db_session, account.id) == 100
        entries = await _reset_entries(db_session, account.id)
        assert entries[0].amount == -40

    async def test_unchanged_balance_writes_no_entry(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """A zero delta advances the marker without a ledger entry."""
        account = await make_account(
            "pro",
            balance=100,
            last_daily_reset_at=_NOW - timedelta(days=1),
        )

        outcome = await QuotaResetter().apply(db_session, account, now=_NOW)
        await db_session.commit()

        assert outcome.daily_reset is True
        assert await _reset_entries(db_session, account.id) == []

    async def test_same_day_is_noop(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """A marker from earlier today means no reset."""
        account = await make_account(
            "pro",
            balance=10,
            last_daily_reset_at=_NOW - timedelta(hours=3),
        )

        outcome = await QuotaResetter().apply(db_session, account, now=_NOW)

        assert outcome.daily_reset is False
        assert outcome.balance is None
        assert await AccountRepository.get_balance(db_session, account.id) == 10

    async def test_boundary_follows_account_timezone(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """14:00 UTC then 16:00 UTC crosses Tokyo midnight."""
        account = await make_account(
            "plus",
            balance=3,
            timezone="Asia/Tokyo",
            last_daily_reset_at=datetime(2026, 3, 15, 14, 0, tzinfo=UTC),
        )

        outcome = await QuotaResetter().apply(
            db_session, account, now=datetime(2026, 3, 15, 16, 0, tzinfo=UTC)
        )

        assert outcome.daily_reset is True
        assert outcome.balance == 180

    async def test_ledger_sum_tracks_resets(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """Reset entries keep the ledger sum equal to the balance."""
        account = await make_account(
            "max",
            balance=0,
            last_daily_reset_at=_NOW - timedelta(days=2),
        )

        await QuotaResetter().apply(db_session, account, now=_NOW)
        await db_session.commit()

        balance = await AccountRepository.get_balance(db_session, account.id)
        assert await LedgerRepository.sum_amounts(db_session, account.id) == balance

    @pytest.mark.concurrency
    async def test_concurrent_requests_reset_once(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        make_account,
    ) -> None:
        """Five parallel passes produce exactly one reset."""
        account = await make_account(
            "pro",
            balance=20,
            last_daily_reset_at=_NOW - timedelta(days=1),
        )

        async def attempt() -> bool:
            async with session_factory() as session:
                outcome = await QuotaResetter().apply(session, account, now=_NOW)
                await session.commit()
                return outcome.daily_reset

        results = await asyncio.gather(*(attempt() for _ in range(5)))

        assert sum(results) == 1
        async with session_factory() as session:
            assert len(await _reset_entries(session, account.id)) == 1
            assert await AccountRepository.get_balance(session, account.id) == 100


# =============================================================================
# Monthly reset
# =============================================================================


class TestMonthlyReset:
    """Free-tier usage counter resets each local month."""

    async def test_previous_month_use_is_cleared(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """A use last month no longer counts."""
        account = await make_account("free", balance=0, free_monthly_uses=1)
        await AccountRepository.mark_free_use(
            db_session,
            account_id=account.id,
            monthly_limit=5,
            now=datetime(2026, 2, 20, tzinfo=UTC),
        )
        await db_session.commit()

        outcome = await QuotaResetter().apply(db_session, account, now=_NOW)
        await db_session.commit()

        refreshed = await AccountRepository.get_by_id(db_session, account.id)
        assert outcome.monthly_reset is True
        assert refreshed is not None
        assert refreshed.free_monthly_uses == 0

    async def test_same_month_use_is_kept(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """A use earlier this month still counts."""
        account = await make_account("free", balance=0)
        await AccountRepository.mark_free_use(
            db_session,
            account_id=account.id,
            monthly_limit=1,
            now=datetime(2026, 3, 2, tzinfo=UTC),
        )
        await db_session.commit()

        outcome = await QuotaResetter().apply(db_session, account, now=_NOW)

        refreshed = await AccountRepository.get_by_id(db_session, account.id)
        assert outcome.monthly_reset is False
        assert refreshed is not None
        assert refreshed.free_monthly_uses == 1

    async def test_paid_tiers_skip_monthly_reset(
        self, db_session: AsyncSession, make_account
    ) -> None:
        """Only free accounts have a monthly counter to reset."""
        account = await make_account("pro", last_daily_reset_at=_NOW)

        outcome = await QuotaResetter().apply(db_session, account, now=_NOW)

        assert outcome.monthly_reset is False
