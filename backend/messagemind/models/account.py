"""Account model: one credit account per user.

The balance is mutated only through the ledger's atomic statements; the
CHECK constraint backs the floor-at-zero invariant at the database level.
Accounts are soft-deactivated, never hard-deleted.
"""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from messagemind.models.base import Base, TimestampMixin


class Account(Base, TimestampMixin):
    """Credit account.

    Attributes:
        id: UUID primary key (the authenticated user's id).
        email: Optional contact email.
        tier: Subscription tier (free, pro, plus, max).
        balance: Current credit balance, never negative.
        daily_allowance: Credits restored by the daily reset (tier-derived).
        timezone: IANA timezone used for calendar-day resets.
        last_daily_reset_at: When the balance was last reset.
        free_monthly_uses: Free-tier analyses used in the current month.
        free_last_used_at: When the free-tier analysis was last used.
        deactivated_at: Set when the account is deleted by the user.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_nonneg"),
        CheckConstraint("daily_allowance >= 0", name="ck_accounts_allowance_nonneg"),
        CheckConstraint(
            "free_monthly_uses >= 0", name="ck_accounts_free_uses_nonneg"
        ),
        CheckConstraint(
            "tier IN ('free', 'pro', 'plus', 'max')",
            name="ck_accounts_tier_valid",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    tier: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    balance: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    daily_allowance: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
    )
    last_daily_reset_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    free_monthly_uses: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    free_last_used_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    deactivated_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
        default=None,
    )

    @property
    def is_active(self) -> bool:
        """Whether the account has not been deactivated."""
        return self.deactivated_at is None
