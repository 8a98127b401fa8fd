"""API v1 router aggregator.

All v1 endpoint routers are included here and mounted at /api/v1.
"""

from fastapi import APIRouter

from messagemind.api.v1 import account, analyses, credits

router = APIRouter()

# =============================================================================
# Account & Credits
# =============================================================================

router.include_router(account.router, prefix="/account", tags=["account"])
router.include_router(credits.router, prefix="/credits", tags=["credits"])

# =============================================================================
# Analyses
# =============================================================================

router.include_router(analyses.router, prefix="/analyses", tags=["analyses"])
