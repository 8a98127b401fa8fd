"""Account provisioning, purchases, deactivation and summaries."""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.core.errors import (
    AccountDeactivatedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from messagemind.models.account import Account
from messagemind.models.base import as_utc
from messagemind.repositories.account_repository import AccountRepository
from messagemind.services.ledger import Ledger, LedgerResult
from messagemind.services.pricing import PricingConfig, Tier
from messagemind.services.quota_resetter import QuotaResetter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountSummary:
    """Read model for the account endpoint.

    Attributes:
        account_id: Account id.
        tier: Subscription tier.
        balance: Current balance.
        daily_allowance: Credits restored each day.
        free_analyses_remaining: Free analyses left this month (free tier).
        last_daily_reset_at: When the balance was last reset.
    """

    account_id: uuid.UUID
    tier: str
    balance: int
    daily_allowance: int
    free_analyses_remaining: int
    last_daily_reset_at: datetime | None


def parse_tier(value: str) -> Tier:
    """Convert a tier string into a Tier.

    Raises:
        ValidationError: If the value is not a known tier.
    """
    try:
        return Tier(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown tier: {value}",
            details=[{"field": "tier", "allowed": [t.value for t in Tier]}],
        ) from e


class AccountService:
    """Account lifecycle operations.

    Args:
        db: Async database session. The caller owns commit/rollback.
        pricing: Pricing table supplying tier allowances.
    """

    def __init__(self, db: AsyncSession, pricing: PricingConfig) -> None:
        self._db = db
        self._pricing = pricing

    async def create_account(
        self,
        account_id: uuid.UUID,
        tier: str,
        *,
        timezone: str = "UTC",
        email: str | None = None,
        now: datetime | None = None,
    ) -> Account:
        """Provision an account with its welcome balance.

        The welcome balance equals the tier's daily allowance and is booked
        as a ``signup_bonus`` entry when positive. The reset marker starts at
        creation time so the same day does not reset it again.

        Args:
            account_id: Id of the authenticated user.
            tier: Subscription tier value.
            timezone: IANA timezone for resets.
            email: Optional contact email.
            now: Creation time (defaults to current UTC time).

        Returns:
            The created Account.

        Raises:
            ValidationError: If the tier or timezone is unknown.
            ConflictError: If the account already exists.
        """
        resolved_tier = parse_tier(tier)
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValidationError(
                f"Unknown timezone: {timezone}",
                details=[{"field": "timezone"}],
            ) from e

        if await AccountRepository.get_by_id(self._db, account_id) is not None:
            raise ConflictError("ACCOUNT_EXISTS", "Account already exists")

        policy = self._pricing.policy_for(resolved_tier)
        try:
            await AccountRepository.create(
                self._db,
                account_id=account_id,
                tier=resolved_tier.value,
                balance=0,
                daily_allowance=policy.daily_allowance,
                last_daily_reset_at=now or datetime.now(UTC),
                timezone=timezone,
                email=email,
            )
        except IntegrityError as e:
            raise ConflictError("ACCOUNT_EXISTS", "Account already exists") from e

        if policy.daily_allowance > 0:
            await Ledger(self._db).credit(
                account_id,
                policy.daily_allowance,
                "signup_bonus",
                {"tier": resolved_tier.value, "welcome_bonus": True},
            )

        logger.info("Created %s account %s", resolved_tier.value, account_id)
        account = await AccountRepository.get_by_id(self._db, account_id)
        assert account is not None, "account created in this transaction"
        return account

    async def get_active_account(self, account_id: uuid.UUID) -> Account:
        """Load an account that may make requests.

        Raises:
            NotFoundError: If the account does not exist.
            AccountDeactivatedError: If the account was deactivated.
        """
        account = await AccountRepository.get_by_id(self._db, account_id)
        if account is None:
            raise NotFoundError("Account")
        if not account.is_active:
            raise AccountDeactivatedError()
        return account

    async def refresh_account(
        self, account_id: uuid.UUID, now: datetime | None = None
    ) -> Account:
        """Load an active account with pending daily/monthly resets applied.

        Commits the reset (balance overwrite plus its ledger entry) so any
        listing read afterwards in the same request already includes it.

        Raises:
            NotFoundError: If the account does not exist.
            AccountDeactivatedError: If the account was deactivated.
        """
        account = await self.get_active_account(account_id)
        await QuotaResetter().apply(self._db, account, now)
        await self._db.commit()
        return await self.get_active_account(account_id)

    async def record_purchase(
        self,
        account_id: uuid.UUID,
        credits: int,
        *,
        payment_reference: str,
    ) -> LedgerResult:
        """Credit a purchased credit pack.

        Args:
            account_id: Account that paid.
            credits: Credits in the pack (positive).
            payment_reference: Payment provider reference for the entry.

        Returns:
            LedgerResult of the purchase entry.

        Raises:
            ValidationError: If credits is not positive.
            NotFoundError: If the account does not exist.
            AccountDeactivatedError: If the account was deactivated.
        """
        if credits <= 0:
            raise ValidationError("Purchased credits must be positive")
        await self.get_active_account(account_id)
        result = await Ledger(self._db).credit(
            account_id,
            credits,
            "purchase",
            {"payment_reference": payment_reference},
        )
        logger.info("Recorded purchase of %d credits for %s", credits, account_id)
        return result

    async def deactivate(
        self,
        account_id: uuid.UUID,
        now: datetime | None = None,
    ) -> None:
        """Soft-deactivate an account.

        Raises:
            NotFoundError: If the account does not exist.
            AccountDeactivatedError: If it was already deactivated.
        """
        await self.get_active_account(account_id)
        await AccountRepository.deactivate(
            self._db, account_id=account_id, now=now or datetime.now(UTC)
        )
        logger.info("Deactivated account %s", account_id)

    def summarize(self, account: Account) -> AccountSummary:
        """Build the account summary read model."""
        policy = self._pricing.policy_for(Tier(account.tier))
        return AccountSummary(
            account_id=account.id,
            tier=account.tier,
            balance=account.balance,
            daily_allowance=account.daily_allowance,
            free_analyses_remaining=max(
                policy.monthly_free_analyses - account.free_monthly_uses, 0
            ),
            last_daily_reset_at=as_utc(account.last_daily_reset_at),
        )
