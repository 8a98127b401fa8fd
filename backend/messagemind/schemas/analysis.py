"""Analysis API request/response schemas.

Submission responses are built by the orchestrator as plain dicts (they
are stored verbatim for idempotent replay); these models describe the
request body and the poll/history views of a stored record.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from messagemind.services.pricing import AnalysisMode

# Generous transport bound; the orchestrator enforces the real input limit
_MAX_IMAGES = 10
_MAX_IMAGE_REF_LENGTH = 2048

# =============================================================================
# Request Schemas
# =============================================================================


class AnalysisTogglesRequest(BaseModel):
    """Request toggles.

    Attributes:
        deep: Deep/expanded surcharge toggle.
        explanation: Ask for an explanation block.
    """

    model_config = ConfigDict(extra="forbid")

    deep: bool = False
    explanation: bool = False


class AnalysisCreateRequest(BaseModel):
    """Request body for POST /analyses.

    Attributes:
        mode: Requested analysis mode (router decides when omitted).
        input_text: Message text to analyze.
        images: Image references (URLs or storage keys).
        toggles: Request toggles.
        idempotency_key: Client key for safe retries. The Idempotency-Key
            header is used when both are given.
        recompute: Bypass the result cache.
    """

    model_config = ConfigDict(extra="forbid")

    mode: AnalysisMode | None = None
    input_text: str | None = None
    images: list[str] = Field(default_factory=list, max_length=_MAX_IMAGES)
    toggles: AnalysisTogglesRequest = Field(default_factory=AnalysisTogglesRequest)
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=255)
    recompute: bool = False

    @field_validator("images")
    @classmethod
    def image_refs_bounded(cls, v: list[str]) -> list[str]:
        """Reject oversized image references."""
        for ref in v:
            if len(ref) > _MAX_IMAGE_REF_LENGTH:
                msg = f"Image references must be at most {_MAX_IMAGE_REF_LENGTH} characters"
                raise ValueError(msg)
        return v


# =============================================================================
# Response Schemas
# =============================================================================


class AnalysisErrorInfo(BaseModel):
    """Client-safe failure description for a failed analysis.

    Attributes:
        code: Always AI_PROCESSING_FAILED; internal reasons are not exposed.
        message: Generic explanation.
        refunded: Whether the charged credits were returned.
    """

    model_config = ConfigDict(extra="forbid")

    code: str
    message: str
    refunded: bool


class AnalysisResponse(BaseModel):
    """Response for GET /analyses/{id}.

    Attributes:
        id: Analysis UUID.
        status: queued, done or failed.
        requested_mode: Mode the user asked for, if any.
        resolved_mode: Mode the analysis ran in.
        model: Resolved model identifier.
        credits_charged: Credits debited at submission.
        tokens_estimated: Advisory token estimate.
        tokens_actual: Tokens reported by the provider (done only).
        result: Analysis payload (done only).
        error: Failure description (failed only).
        created_at: Submission time.
        completed_at: When the analysis reached a terminal status.
    """

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID
    status: str
    requested_mode: str | None
    resolved_mode: str
    model: str
    credits_charged: int
    tokens_estimated: int
    tokens_actual: int | None = None
    result: dict[str, Any] | None = None
    error: AnalysisErrorInfo | None = None
    created_at: datetime
    completed_at: datetime | None = None


class AnalysisSummaryResponse(BaseModel):
    """Response item for GET /analyses (history, no result payload).

    Attributes:
        id: Analysis UUID.
        status: queued, done or failed.
        resolved_mode: Mode the analysis ran in.
        credits_charged: Credits debited at submission.
        created_at: Submission time.
        completed_at: When the analysis reached a terminal status.
    """

    model_config = ConfigDict(extra="forbid")

    id: uuid.UUID
    status: str
    resolved_mode: str
    credits_charged: int
    created_at: datetime
    completed_at: datetime | None = None
