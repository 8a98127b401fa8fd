"""Credit ledger response schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class LedgerEntryResponse(BaseModel):
    """Response item for GET /credits/transactions.

    Attributes:
        id: Ledger entry UUID.
        amount: Signed credit amount (negative for spends).
        kind: signup_bonus, purchase, action_spend, refund or daily_reset.
        balance_after: Balance right after this entry.
        detail: Structured detail (breakdown, refund reason, reset values).
        reference_entry_id: For refunds, the reversed spend entry.
        created_at: Entry timestamp.
    """

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID
    amount: int
    kind: str
    balance_after: int
    detail: dict[str, Any]
    reference_entry_id: uuid.UUID | None = None
    created_at: datetime
