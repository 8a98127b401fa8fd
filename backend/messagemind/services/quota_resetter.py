"""Lazy daily-allowance and monthly free-quota resets.

Invoked at the start of every account-scoped request instead of on a
timer. Calendar boundaries are evaluated in the account's timezone.

Daily reset: when the last reset happened before today's local midnight,
the balance is overwritten with the daily allowance (a reset, not a
top-up) and a ``daily_reset`` entry records the signed delta so the ledger
sum keeps matching the balance. Claiming the reset is a conditional UPDATE
on the reset marker, so concurrent requests reset at most once.

Monthly reset (free tier): when the free analysis was last used before
the current local month, the usage counter goes back to zero.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.models.account import Account
from messagemind.repositories.account_repository import AccountRepository
from messagemind.repositories.ledger_repository import LedgerRepository
from messagemind.services.pricing import Tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResetOutcome:
    """What a reset pass changed.

    Attributes:
        daily_reset: Balance was reset to the daily allowance.
        monthly_reset: Free-use counter was zeroed.
        balance: Balance after the pass (None when unchanged).
    """

    daily_reset: bool = False
    monthly_reset: bool = False
    balance: int | None = None


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve an IANA timezone name, falling back to UTC.

    Args:
        name: Timezone name stored on the account.

    Returns:
        tzinfo for the name, or UTC if missing or unknown.
    """
    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", name)
        return UTC


def local_day_start(now: datetime, tz: tzinfo) -> datetime:
    """Start of the local calendar day containing ``now``, in UTC."""
    local = now.astimezone(tz)
    midnight = datetime(local.year, local.month, local.day, tzinfo=tz)
    return midnight.astimezone(UTC)


def local_month_start(now: datetime, tz: tzinfo) -> datetime:
    """Start of the local calendar month containing ``now``, in UTC."""
    local = now.astimezone(tz)
    first = datetime(local.year, local.month, 1, tzinfo=tz)
    return first.astimezone(UTC)


class QuotaResetter:
    """Applies pending daily and monthly resets for one account."""

    async def apply(
        self,
        db: AsyncSession,
        account: Account,
        now: datetime | None = None,
    ) -> ResetOutcome:
        """Run both resets for an account.

        Does not commit; the caller commits so the balance overwrite and its
        ledger entry land together.

        Args:
            db: Async database session.
            account: Account to reset (tier, timezone and allowance are read
                from it).
            now: Reference time (defaults to current UTC time).

        Returns:
            ResetOutcome describing what changed.
        """
        now = now or datetime.now(UTC)
        tz = resolve_timezone(account.timezone)

        daily_reset, balance = await self._reset_daily(db, account, now, tz)
        monthly_reset = False
        if account.tier == Tier.FREE.value:
            monthly_reset = await AccountRepository.reset_free_monthly_uses(
                db,
                account_id=account.id,
                month_start=local_month_start(now, tz),
            )
            if monthly_reset:
                logger.info("Monthly free quota reset for account %s", account.id)

        return ResetOutcome(
            daily_reset=daily_reset,
            monthly_reset=monthly_reset,
            balance=balance,
        )

    async def _reset_daily(
        self,
        db: AsyncSession,
        account: Account,
        now: datetime,
        tz: tzinfo,
    ) -> tuple[bool, int | None]:
        previous = await AccountRepository.claim_daily_reset(
            db,
            account_id=account.id,
            day_start=local_day_start(now, tz),
            now=now,
        )
        if previous is None:
            return False, None

        allowance = account.daily_allowance
        await AccountRepository.set_balance(db, account_id=account.id, balance=allowance)
        delta = allowance - previous
        if delta != 0:
            await LedgerRepository.create(
                db,
                account_id=account.id,
                amount=delta,
                kind="daily_reset",
                balance_after=allowance,
                detail={"previous_balance": previous, "allowance": allowance},
            )
        logger.info(
            "Daily reset for account %s: %d -> %d", account.id, previous, allowance
        )
        return True, allowance
