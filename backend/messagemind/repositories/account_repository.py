"""Repository for account rows and their atomic counter updates.

Balance and quota changes are single conditional UPDATE statements so
concurrent requests cannot interleave a read and a write. Statements run
with ``synchronize_session=False``; callers that need a fresh Account
object re-read it with ``get_by_id`` (which populates existing objects).
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import or_, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.models.account import Account

_NO_SYNC = {"synchronize_session": False}


class AccountRepository:
    """Stateless repository for Account operations.

    All methods are static. Pass an AsyncSession for every call so the
    caller controls transaction boundaries.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        tier: str,
        balance: int,
        daily_allowance: int,
        last_daily_reset_at: datetime,
        timezone: str = "UTC",
        email: str | None = None,
    ) -> Account:
        """Create a new account.

        Args:
            db: Async database session.
            account_id: Id of the authenticated user owning the account.
            tier: Subscription tier.
            balance: Opening balance.
            daily_allowance: Tier-derived daily allowance.
            last_daily_reset_at: Initial reset marker.
            timezone: IANA timezone for calendar-day resets.
            email: Optional contact email.

        Returns:
            Created Account.
        """
        account = Account(
            id=account_id,
            tier=tier,
            balance=balance,
            daily_allowance=daily_allowance,
            last_daily_reset_at=last_daily_reset_at,
            timezone=timezone,
            email=email,
        )
        db.add(account)
        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def get_by_id(db: AsyncSession, account_id: uuid.UUID) -> Account | None:
        """Fetch an account, refreshing any copy already in the session.

        Args:
            db: Async database session.
            account_id: Account to fetch.

        Returns:
            Account or None if it does not exist.
        """
        stmt = (
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_balance(db: AsyncSession, account_id: uuid.UUID) -> int | None:
        """Read the account's current balance.

        Args:
            db: Async database session.
            account_id: Account to query.

        Returns:
            Current balance, or None if the account does not exist.
        """
        result = await db.execute(
            select(Account.balance).where(Account.id == account_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def atomic_debit(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        amount: int,
    ) -> int | None:
        """Atomically debit the balance if it covers the amount.

        Uses ``WHERE balance >= amount`` so the balance can never go negative
        regardless of concurrent debits.

        Args:
            db: Async database session.
            account_id: Account to debit.
            amount: Credits to remove (positive).

        Returns:
            New balance, or None if the balance was insufficient.

        Raises:
            ValueError: If amount is not positive.
        """
        if amount <= 0:
            raise ValueError("atomic_debit amount must be positive")
        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.balance >= amount)
            .values(balance=Account.balance - amount)
            .returning(Account.balance)
            .execution_options(**_NO_SYNC)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def atomic_credit(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        amount: int,
    ) -> int:
        """Atomically credit the balance.

        Args:
            db: Async database session.
            account_id: Account to credit.
            amount: Credits to add (positive).

        Returns:
            New balance after crediting.

        Raises:
            ValueError: If amount is not positive.
            sqlalchemy.exc.NoResultFound: If the account does not exist.
        """
        if amount <= 0:
            raise ValueError("atomic_credit amount must be positive")
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(balance=Account.balance + amount)
            .returning(Account.balance)
            .execution_options(**_NO_SYNC)
        )
        result = await db.execute(stmt)
        new_balance: int = result.scalar_one()
        return new_balance

    @staticmethod
    async def claim_daily_reset(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        day_start: datetime,
        now: datetime,
    ) -> int | None:
        """Claim today's reset by advancing the reset marker.

        Only succeeds when the marker is older than the start of the current
        day, so exactly one concurrent caller wins. The row stays locked by
        this transaction until commit, so the returned balance cannot change
        before ``set_balance`` runs.

        Args:
            db: Async database session.
            account_id: Account to reset.
            day_start: Start of the current calendar day, in UTC.
            now: Current time (new marker).

        Returns:
            Balance before the reset, or None if already reset today.
        """
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                or_(
                    Account.last_daily_reset_at.is_(None),
                    Account.last_daily_reset_at < day_start,
                ),
            )
            .values(last_daily_reset_at=now)
            .returning(Account.balance)
            .execution_options(**_NO_SYNC)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def set_balance(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        balance: int,
    ) -> None:
        """Overwrite the balance (daily reset only).

        Args:
            db: Async database session.
            account_id: Account to update.
            balance: New balance (non-negative).
        """
        await db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance=balance)
            .execution_options(**_NO_SYNC)
        )

    @staticmethod
    async def reset_free_monthly_uses(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        month_start: datetime,
    ) -> bool:
        """Zero the free-use counter if it was last used before this month.

        Args:
            db: Async database session.
            account_id: Account to reset.
            month_start: Start of the current calendar month, in UTC.

        Returns:
            True if the counter was reset, False if nothing to do.
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(Account)
                .where(
                    Account.id == account_id,
                    Account.free_monthly_uses > 0,
                    Account.free_last_used_at < month_start,
                )
                .values(free_monthly_uses=0)
                .execution_options(**_NO_SYNC)
            ),
        )
        return result.rowcount > 0

    @staticmethod
    async def mark_free_use(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        monthly_limit: int,
        now: datetime,
    ) -> bool:
        """Consume one free analysis if the monthly limit allows it.

        Args:
            db: Async database session.
            account_id: Account using its free analysis.
            monthly_limit: Free analyses allowed per month.
            now: Current time (recorded as last use).

        Returns:
            True if a unit was consumed, False if the quota is exhausted.
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(Account)
                .where(
                    Account.id == account_id,
                    Account.free_monthly_uses < monthly_limit,
                )
                .values(
                    free_monthly_uses=Account.free_monthly_uses + 1,
                    free_last_used_at=now,
                )
                .execution_options(**_NO_SYNC)
            ),
        )
        return result.rowcount > 0

    @staticmethod
    async def undo_free_use(db: AsyncSession, *, account_id: uuid.UUID) -> bool:
        """Give back one free analysis (floor at zero).

        Args:
            db: Async database session.
            account_id: Account to restore.

        Returns:
            True if a unit was restored.
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(Account)
                .where(Account.id == account_id, Account.free_monthly_uses > 0)
                .values(free_monthly_uses=Account.free_monthly_uses - 1)
                .execution_options(**_NO_SYNC)
            ),
        )
        return result.rowcount > 0

    @staticmethod
    async def deactivate(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        now: datetime,
    ) -> bool:
        """Soft-deactivate an account.

        Args:
            db: Async database session.
            account_id: Account to deactivate.
            now: Deactivation time.

        Returns:
            True if the account was active and is now deactivated.
        """
        result = cast(
            CursorResult[Any],
            await db.execute(
                update(Account)
                .where(Account.id == account_id, Account.deactivated_at.is_(None))
                .values(deactivated_at=now)
                .execution_options(**_NO_SYNC)
            ),
        )
        return result.rowcount > 0
