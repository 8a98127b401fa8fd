"""Analyses API router.

Submit an analysis (charged and queued, answered from cache, or replayed
for a repeated idempotency key), poll a single analysis, and list
history. Records of other accounts are reported as not found.
"""

import uuid
from typing import Annotated, Literal

from fastapi import APIRouter, Header, Query, Request, status
from fastapi.responses import JSONResponse

from messagemind.api.deps import ActiveAccount, CurrentAccountId, DbSession, Orchestrator
from messagemind.core.config import settings
from messagemind.core.errors import AIProviderError, NotFoundError
from messagemind.core.pagination import Pagination
from messagemind.core.rate_limiting import limiter
from messagemind.core.responses import DataResponse, ListResponse
from messagemind.models.analysis import AnalysisRequest
from messagemind.models.base import as_utc
from messagemind.repositories.analysis_repository import AnalysisRepository
from messagemind.schemas.analysis import (
    AnalysisCreateRequest,
    AnalysisErrorInfo,
    AnalysisResponse,
    AnalysisSummaryResponse,
)
from messagemind.services.analysis_orchestrator import AnalysisSubmission
from messagemind.services.pricing import AnalysisToggles

router = APIRouter()

# =============================================================================
# Shared types
# =============================================================================

StatusFilter = Annotated[
    Literal["queued", "done", "failed"] | None,
    Query(alias="status", description="Filter: queued, done, failed"),
]
IdempotencyKeyHeader = Annotated[
    str | None,
    Header(min_length=1, max_length=255, description="Key for safe retries"),
]


def _to_response(record: AnalysisRequest) -> AnalysisResponse:
    error = None
    if record.status == "failed":
        failure = AIProviderError()
        error = AnalysisErrorInfo(
            code=failure.code,
            message=failure.message,
            refunded=record.refund_entry_id is not None,
        )
    return AnalysisResponse(
        id=record.id,
        status=record.status,
        requested_mode=record.requested_mode,
        resolved_mode=record.resolved_mode,
        model=record.model,
        credits_charged=record.credits_charged,
        tokens_estimated=record.tokens_estimated,
        tokens_actual=record.tokens_actual,
        result=record.result if record.status == "done" else None,
        error=error,
        created_at=as_utc(record.created_at),
        completed_at=as_utc(record.completed_at),
    )


# =============================================================================
# POST /analyses
# =============================================================================


@router.post("", status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(lambda: settings.rate_limit_analysis)
async def submit_analysis(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: AnalysisCreateRequest,
    account_id: CurrentAccountId,
    orchestrator: Orchestrator,
    idempotency_key: IdempotencyKeyHeader = None,
) -> JSONResponse:
    """Submit an analysis.

    Returns 202 with the charge and the queued analysis id, 200 with the
    stored result on a cache hit, or the first response (with its original
    status) for a repeated idempotency key.
    """
    submission = AnalysisSubmission(
        input_text=body.input_text,
        images=tuple(body.images),
        mode=body.mode,
        toggles=AnalysisToggles(
            deep=body.toggles.deep, explanation=body.toggles.explanation
        ),
        idempotency_key=idempotency_key or body.idempotency_key,
        recompute=body.recompute,
    )
    result = await orchestrator.submit(account_id, submission)

    headers = {"Idempotency-Replayed": "true"} if result.replayed else None
    return JSONResponse(
        status_code=result.status_code,
        content={"data": result.body},
        headers=headers,
    )


# =============================================================================
# GET /analyses
# =============================================================================


@router.get("")
async def list_analyses(
    account: ActiveAccount,
    db: DbSession,
    pagination: Pagination,
    status_filter: StatusFilter = None,
) -> ListResponse[AnalysisSummaryResponse]:
    """Return the account's analyses, newest first."""
    records, total = await AnalysisRepository.list_by_account(
        db,
        account.id,
        offset=pagination.offset,
        limit=pagination.limit,
        status=status_filter,
    )

    return ListResponse(
        data=[
            AnalysisSummaryResponse(
                id=record.id,
                status=record.status,
                resolved_mode=record.resolved_mode,
                credits_charged=record.credits_charged,
                created_at=as_utc(record.created_at),
                completed_at=as_utc(record.completed_at),
            )
            for record in records
        ],
        meta=pagination.meta(total),
    )


# =============================================================================
# GET /analyses/{analysis_id}
# =============================================================================


@router.get("/{analysis_id}")
async def get_analysis(
    analysis_id: uuid.UUID,
    account: ActiveAccount,
    db: DbSession,
) -> DataResponse[AnalysisResponse]:
    """Poll one analysis."""
    record = await AnalysisRepository.get_for_account(
        db, analysis_id=analysis_id, account_id=account.id
    )
    if record is None:
        raise NotFoundError("Analysis", str(analysis_id))
    return DataResponse(data=_to_response(record))
