"""Repository for append-only ledger entries."""

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.models.ledger import LedgerEntry


class LedgerRepository:
    """Stateless repository for LedgerEntry rows.

    Entries are only ever inserted and read. The balance mutation that
    an entry describes is performed by AccountRepository in the same
    transaction.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        amount: int,
        kind: str,
        balance_after: int,
        detail: dict[str, Any] | None = None,
        reference_entry_id: uuid.UUID | None = None,
    ) -> LedgerEntry:
        """Append a ledger entry.

        Args:
            db: Async database session.
            account_id: Account the mutation applies to.
            amount: Signed amount (negative for spends).
            kind: Ledger kind.
            balance_after: Balance right after the mutation.
            detail: Structured detail payload.
            reference_entry_id: Spend entry being reversed, for refunds.

        Returns:
            Created LedgerEntry.
        """
        entry = LedgerEntry(
            account_id=account_id,
            amount=amount,
            kind=kind,
            balance_after=balance_after,
            detail=detail or {},
            reference_entry_id=reference_entry_id,
        )
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def get_by_id(
        db: AsyncSession,
        entry_id: uuid.UUID,
    ) -> LedgerEntry | None:
        """Fetch a single entry by id."""
        result = await db.execute(select(LedgerEntry).where(LedgerEntry.id == entry_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def find_refund_for(
        db: AsyncSession,
        spend_entry_id: uuid.UUID,
    ) -> LedgerEntry | None:
        """Find the refund entry that reverses a spend, if any."""
        result = await db.execute(
            select(LedgerEntry).where(
                LedgerEntry.reference_entry_id == spend_entry_id,
                LedgerEntry.kind == "refund",
            )
        )
        return result.scalars().first()

    @staticmethod
    async def list_by_account(
        db: AsyncSession,
        account_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
        kind: str | None = None,
    ) -> tuple[list[LedgerEntry], int]:
        """List entries for an account, newest first.

        Args:
            db: Async database session.
            account_id: Account to list.
            offset: Rows to skip.
            limit: Maximum rows to return.
            kind: Optional ledger kind filter.

        Returns:
            Tuple of (entries, total matching count).
        """
        conditions = [LedgerEntry.account_id == account_id]
        if kind is not None:
            conditions.append(LedgerEntry.kind == kind)

        total_result = await db.execute(
            select(func.count()).select_from(LedgerEntry).where(*conditions)
        )
        total = total_result.scalar_one()

        result = await db.execute(
            select(LedgerEntry)
            .where(*conditions)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def sum_amounts(db: AsyncSession, account_id: uuid.UUID) -> int:
        """Sum of all signed amounts for an account (reconciliation)."""
        result = await db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
                LedgerEntry.account_id == account_id
            )
        )
        return int(result.scalar_one())
