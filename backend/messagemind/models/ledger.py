"""Ledger ORM model: append-only, no TimestampMixin.

Every balance mutation writes exactly one LedgerEntry in the same
transaction. Entries are never updated or deleted.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from messagemind.models.base import Base, JSONType, utc_now

LEDGER_KINDS = ("signup_bonus", "purchase", "action_spend", "refund", "daily_reset")


class LedgerEntry(Base):
    """Immutable record of one balance mutation.

    Positive amounts increase the balance (bonus, purchase, refund);
    negative amounts are spends. Daily resets record the signed delta.

    Attributes:
        id: UUID primary key.
        account_id: FK to accounts.
        amount: Signed credit amount.
        kind: signup_bonus, purchase, action_spend, refund or daily_reset.
        balance_after: Account balance right after this mutation.
        detail: Structured detail payload (breakdown, reason, references).
        reference_entry_id: For refunds, the spend entry being reversed.
        created_at: Entry timestamp.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('signup_bonus', 'purchase', 'action_spend', 'refund', "
            "'daily_reset')",
            name="ck_ledger_kind_valid",
        ),
        CheckConstraint("balance_after >= 0", name="ck_ledger_balance_after_nonneg"),
        Index("ix_ledger_entries_account_created", "account_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    balance_after: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    detail: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    reference_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("ledger_entries.id", ondelete="RESTRICT"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
