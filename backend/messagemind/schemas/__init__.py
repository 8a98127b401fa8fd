"""Pydantic request/response schemas for API endpoints."""

from messagemind.schemas.account import AccountCreateRequest, AccountResponse
from messagemind.schemas.analysis import (
    AnalysisCreateRequest,
    AnalysisErrorInfo,
    AnalysisResponse,
    AnalysisSummaryResponse,
    AnalysisTogglesRequest,
)
from messagemind.schemas.credits import LedgerEntryResponse

__all__ = [
    # Account
    "AccountCreateRequest",
    "AccountResponse",
    # Analyses
    "AnalysisCreateRequest",
    "AnalysisErrorInfo",
    "AnalysisResponse",
    "AnalysisSummaryResponse",
    "AnalysisTogglesRequest",
    # Credits
    "LedgerEntryResponse",
]
