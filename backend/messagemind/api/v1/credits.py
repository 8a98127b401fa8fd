"""Credits API router.

Ledger history for the authenticated account. Amounts are signed credit
integers; spends are negative.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Query

from messagemind.api.deps import ActiveAccount, DbSession
from messagemind.core.pagination import Pagination
from messagemind.core.responses import ListResponse
from messagemind.models.base import as_utc
from messagemind.repositories.ledger_repository import LedgerRepository
from messagemind.schemas.credits import LedgerEntryResponse

router = APIRouter()

_VALID_KINDS = Literal["signup_bonus", "purchase", "action_spend", "refund", "daily_reset"]

KindFilter = Annotated[
    _VALID_KINDS | None,
    Query(description="Filter: signup_bonus, purchase, action_spend, refund, daily_reset"),
]


# =============================================================================
# GET /transactions
# =============================================================================


@router.get("/transactions")
async def get_transactions(
    account: ActiveAccount,
    db: DbSession,
    pagination: Pagination,
    kind: KindFilter = None,
) -> ListResponse[LedgerEntryResponse]:
    """Return paginated ledger entries, newest first (today's reset included)."""
    entries, total = await LedgerRepository.list_by_account(
        db,
        account.id,
        offset=pagination.offset,
        limit=pagination.limit,
        kind=kind,
    )

    return ListResponse(
        data=[
            LedgerEntryResponse(
                id=entry.id,
                amount=entry.amount,
                kind=entry.kind,
                balance_after=entry.balance_after,
                detail=entry.detail,
                reference_entry_id=entry.reference_entry_id,
                created_at=as_utc(entry.created_at),
            )
            for entry in entries
        ],
        meta=pagination.meta(total),
    )
