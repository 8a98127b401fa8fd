"""Account API request/response schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AccountCreateRequest(BaseModel):
    """Request body for POST /account.

    Attributes:
        tier: Subscription tier (free, pro, plus, max).
        timezone: IANA timezone for daily resets.
        email: Optional contact email.
    """

    model_config = ConfigDict(extra="forbid")

    tier: str = Field(..., min_length=1, max_length=10)
    timezone: str = Field(default="UTC", min_length=1, max_length=64)
    email: str | None = Field(default=None, max_length=255)


class AccountResponse(BaseModel):
    """Response for GET/POST /account.

    Attributes:
        id: Account UUID.
        tier: Subscription tier.
        balance: Current credit balance.
        daily_allowance: Credits restored each day.
        free_analyses_remaining: Free analyses left this month.
        last_daily_reset_at: When the balance was last reset.
    """

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID
    tier: str
    balance: int
    daily_allowance: int
    free_analyses_remaining: int
    last_daily_reset_at: datetime | None
