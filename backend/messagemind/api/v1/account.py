"""Account API router.

Provision, read and deactivate the authenticated user's credit account.
Reading the account applies any pending daily or monthly reset first, so
the balance shown is the one the next analysis will be charged against.
"""

from fastapi import APIRouter, Response, status

from messagemind.api.deps import ActiveAccount, CurrentAccountId, DbSession, Pricing
from messagemind.core.responses import DataResponse
from messagemind.schemas.account import AccountCreateRequest, AccountResponse
from messagemind.services.account_service import AccountService, AccountSummary

router = APIRouter()


def _to_response(summary: AccountSummary) -> AccountResponse:
    return AccountResponse(
        id=summary.account_id,
        tier=summary.tier,
        balance=summary.balance,
        daily_allowance=summary.daily_allowance,
        free_analyses_remaining=summary.free_analyses_remaining,
        last_daily_reset_at=summary.last_daily_reset_at,
    )


# =============================================================================
# POST /account
# =============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_account(
    body: AccountCreateRequest,
    account_id: CurrentAccountId,
    db: DbSession,
    pricing: Pricing,
) -> DataResponse[AccountResponse]:
    """Provision the account with its welcome balance.

    Returns 409 ACCOUNT_EXISTS when the account already exists.
    """
    service = AccountService(db, pricing)
    account = await service.create_account(
        account_id, body.tier, timezone=body.timezone, email=body.email
    )
    await db.commit()
    return DataResponse(data=_to_response(service.summarize(account)))


# =============================================================================
# GET /account
# =============================================================================


@router.get("")
async def get_account(
    account: ActiveAccount,
    db: DbSession,
    pricing: Pricing,
) -> DataResponse[AccountResponse]:
    """Return the account summary after applying pending resets."""
    return DataResponse(data=_to_response(AccountService(db, pricing).summarize(account)))


# =============================================================================
# DELETE /account
# =============================================================================


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    account_id: CurrentAccountId,
    db: DbSession,
    pricing: Pricing,
) -> Response:
    """Soft-deactivate the account. Ledger history is kept."""
    await AccountService(db, pricing).deactivate(account_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
