"""Atomic credit ledger.

Every balance mutation is a conditional UPDATE on the account row plus one
appended LedgerEntry. Both statements run on the caller's session, so they
commit or roll back together; the ledger never commits on its own.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.core.errors import InsufficientCreditsError, NotFoundError
from messagemind.repositories.account_repository import AccountRepository
from messagemind.repositories.ledger_repository import LedgerRepository

logger = logging.getLogger(__name__)

SPEND_KIND = "action_spend"
REFUND_KIND = "refund"
_CREDIT_KINDS = frozenset({"signup_bonus", "purchase", "refund"})


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a balance mutation.

    Attributes:
        new_balance: Account balance after the mutation.
        entry_id: Id of the appended ledger entry.
    """

    new_balance: int
    entry_id: uuid.UUID


class Ledger:
    """Reserves, credits and refunds account balances.

    Args:
        db: Async database session. The caller owns commit/rollback.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def reserve(
        self,
        account_id: uuid.UUID,
        amount: int,
        kind: str = SPEND_KIND,
        detail: dict[str, Any] | None = None,
        *,
        breakdown: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Debit the balance and append a spend entry.

        Args:
            account_id: Account to charge.
            amount: Credits to reserve (positive).
            kind: Ledger kind for the entry.
            detail: Structured detail stored on the entry.
            breakdown: Cost breakdown reported if the balance is too low.

        Returns:
            LedgerResult with the new balance and spend entry id.

        Raises:
            ValueError: If amount is not positive.
            InsufficientCreditsError: If the balance does not cover the amount.
                Nothing is written in that case.
            NotFoundError: If the account does not exist.
        """
        new_balance = await AccountRepository.atomic_debit(
            self._db, account_id=account_id, amount=amount
        )
        if new_balance is None:
            current = await AccountRepository.get_balance(self._db, account_id)
            if current is None:
                raise NotFoundError("Account", str(account_id))
            raise InsufficientCreditsError(
                credits_remaining=current,
                credits_needed=amount,
                breakdown=breakdown,
            )

        entry = await LedgerRepository.create(
            self._db,
            account_id=account_id,
            amount=-amount,
            kind=kind,
            balance_after=new_balance,
            detail=detail,
        )
        logger.info(
            "Reserved %d credits from account %s (balance %d)",
            amount,
            account_id,
            new_balance,
        )
        return LedgerResult(new_balance=new_balance, entry_id=entry.id)

    async def credit(
        self,
        account_id: uuid.UUID,
        amount: int,
        kind: str,
        detail: dict[str, Any] | None = None,
        *,
        reference_entry_id: uuid.UUID | None = None,
    ) -> LedgerResult:
        """Credit the balance and append an entry.

        Args:
            account_id: Account to credit.
            amount: Credits to add (positive).
            kind: signup_bonus, purchase or refund.
            detail: Structured detail stored on the entry.
            reference_entry_id: Spend entry being reversed, for refunds.

        Returns:
            LedgerResult with the new balance and entry id.

        Raises:
            ValueError: If amount is not positive or kind is not a credit kind.
            NotFoundError: If the account does not exist.
        """
        if kind not in _CREDIT_KINDS:
            raise ValueError(f"Not a credit kind: {kind!r}")
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        if await AccountRepository.get_balance(self._db, account_id) is None:
            raise NotFoundError("Account", str(account_id))

        new_balance = await AccountRepository.atomic_credit(
            self._db, account_id=account_id, amount=amount
        )
        entry = await LedgerRepository.create(
            self._db,
            account_id=account_id,
            amount=amount,
            kind=kind,
            balance_after=new_balance,
            detail=detail,
            reference_entry_id=reference_entry_id,
        )
        return LedgerResult(new_balance=new_balance, entry_id=entry.id)

    async def refund(
        self,
        account_id: uuid.UUID,
        amount: int,
        *,
        spend_entry_id: uuid.UUID,
        reason: str,
        analysis_id: uuid.UUID | None = None,
    ) -> LedgerResult:
        """Reverse a spend by crediting the same amount back.

        Args:
            account_id: Account that was charged.
            amount: Amount originally reserved.
            spend_entry_id: The spend entry being reversed.
            reason: Internal failure classification.
            analysis_id: Related analysis record, if any.

        Returns:
            LedgerResult for the refund entry.
        """
        detail: dict[str, Any] = {"reason": reason}
        if analysis_id is not None:
            detail["analysis_id"] = str(analysis_id)
        result = await self.credit(
            account_id,
            amount,
            REFUND_KIND,
            detail,
            reference_entry_id=spend_entry_id,
        )
        logger.info(
            "Refunded %d credits to account %s for spend %s (%s)",
            amount,
            account_id,
            spend_entry_id,
            reason,
        )
        return result
