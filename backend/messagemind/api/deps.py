"""Shared dependencies for API endpoints.

Authentication: local mode uses DEFAULT_USER_ID; hosted mode validates a
JWT from the session cookie. Service wiring: pricing table, result cache,
background dispatcher and the per-request orchestrator.
"""

import uuid
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.core.auth import account_id_from_token
from messagemind.core.config import settings
from messagemind.core.database import get_db, get_session_factory
from messagemind.core.errors import UnauthorizedError
from messagemind.models.account import Account
from messagemind.providers.config import ProviderConfig
from messagemind.providers.factory import get_llm_provider
from messagemind.services.account_service import AccountService
from messagemind.services.analysis_orchestrator import AnalysisOrchestrator
from messagemind.services.analysis_processor import (
    AnalysisDispatcher,
    AnalysisProcessor,
)
from messagemind.services.fingerprint import AnalysisCache
from messagemind.services.pricing import PricingConfig, build_pricing_config

# =============================================================================
# Authentication
# =============================================================================


async def get_current_account_id(request: Request) -> uuid.UUID:
    """Get the current account id from the auth context.

    Validation steps (hosted mode):
    1. Read JWT from cookie
    2. Decode + verify signature (HS256)
    3. Verify exp, aud, iss claims
    4. Extract sub as UUID

    Args:
        request: HTTP request (injected by FastAPI).

    Returns:
        UUID of the authenticated user, which is also their account id.

    Raises:
        UnauthorizedError: For any auth failure. The message never says why.
    """
    if not settings.auth_enabled:
        if settings.default_user_id is None:
            raise UnauthorizedError()
        return settings.default_user_id

    account_id = account_id_from_token(request.cookies.get(settings.auth_cookie_name))
    if account_id is None:
        raise UnauthorizedError()
    return account_id


# Reusable type aliases for dependency injection
CurrentAccountId = Annotated[uuid.UUID, Depends(get_current_account_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]

# =============================================================================
# Services
# =============================================================================

_pricing: PricingConfig | None = None
_dispatcher: AnalysisDispatcher | None = None


def get_pricing() -> PricingConfig:
    """Get the pricing table built from settings (created once)."""
    global _pricing

    if _pricing is None:
        _pricing = build_pricing_config(
            default_model=settings.default_analysis_model,
            model_overrides=settings.tier_model_overrides,
        )
    return _pricing


def get_analysis_cache() -> AnalysisCache | None:
    """Get the result cache, or None when caching is disabled."""
    if not settings.cache_enabled:
        return None
    return AnalysisCache(retention_days=settings.cache_retention_days)


def get_dispatcher() -> AnalysisDispatcher:
    """Get or create the background dispatcher singleton.

    The processor opens its own sessions from the session factory because
    analyses outlive the request that submitted them.
    """
    global _dispatcher

    if _dispatcher is None:
        processor = AnalysisProcessor(
            get_session_factory(),
            get_llm_provider(),
            timeout_seconds=settings.analysis_timeout_seconds,
            retry_config=ProviderConfig.from_env(),
        )
        _dispatcher = AnalysisDispatcher(processor)
    return _dispatcher


async def drain_dispatcher() -> None:
    """Wait for in-flight analyses if a dispatcher was ever created."""
    if _dispatcher is not None:
        await _dispatcher.drain()


def reset_dependencies() -> None:
    """Reset service singletons.

    Used in tests to ensure isolation between test cases.
    """
    global _pricing, _dispatcher
    _pricing = None
    _dispatcher = None


Pricing = Annotated[PricingConfig, Depends(get_pricing)]


def get_orchestrator(
    db: DbSession,
    pricing: Pricing,
    dispatcher: Annotated[AnalysisDispatcher, Depends(get_dispatcher)],
    cache: Annotated[AnalysisCache | None, Depends(get_analysis_cache)],
) -> AnalysisOrchestrator:
    """Build the orchestrator for one request."""
    return AnalysisOrchestrator(
        db,
        pricing=pricing,
        dispatcher=dispatcher,
        cache=cache,
        idempotency_ttl=settings.idempotency_ttl,
    )


Orchestrator = Annotated[AnalysisOrchestrator, Depends(get_orchestrator)]


async def get_active_account(
    account_id: CurrentAccountId,
    db: DbSession,
    pricing: Pricing,
) -> Account:
    """The caller's account with pending daily/monthly resets committed.

    Every account-scoped read depends on this, so balances and ledger
    history reflect today's reset from the first request of the day.
    """
    return await AccountService(db, pricing).refresh_account(account_id)


ActiveAccount = Annotated[Account, Depends(get_active_account)]
