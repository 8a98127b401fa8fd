"""Analysis orchestrator: validate, price, cache-check, charge, dispatch.

Request lifecycle:

    validating -> priced -> cache_checked -> charged -> dispatched
                                                        -> done | failed

Validation failures are rejected before anything is written. A cache hit
ends the flow with nothing charged. The charge commits in its own
transaction before the analysis record is written; if that write fails,
the charge is compensated (refund, or free-quota undo) before the error
reaches the caller. The AI call happens in the background dispatcher.

Idempotency keys are claimed before any charge under a unique constraint.
The first response is stored on the claim and replayed for repeats; a
rejected request releases its claim so the client can retry.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.core.errors import (
    ConflictError,
    InputTooLargeError,
    PersistenceError,
    QuotaExhaustedError,
    UpgradeRequiredError,
    ValidationError,
)
from messagemind.models.account import Account
from messagemind.models.base import as_utc
from messagemind.repositories.account_repository import AccountRepository
from messagemind.repositories.analysis_repository import AnalysisRepository
from messagemind.repositories.idempotency_repository import IdempotencyRepository
from messagemind.services.account_service import AccountService
from messagemind.services.analysis_processor import AnalysisDispatcher, AnalysisJob
from messagemind.services.credit_calculator import CreditQuote, calculate_credits
from messagemind.services.fingerprint import AnalysisCache, compute_fingerprint
from messagemind.services.ledger import Ledger
from messagemind.services.mode_router import RoutingDecision, route_mode
from messagemind.services.pricing import (
    AnalysisMode,
    AnalysisToggles,
    PricingConfig,
    Tier,
    TierPolicy,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Types
# =============================================================================


@dataclass(frozen=True)
class AnalysisSubmission:
    """An inbound analysis request.

    Attributes:
        input_text: Message text to analyze.
        images: Image references.
        mode: Explicitly requested mode, if any.
        toggles: Request toggles.
        idempotency_key: Client-supplied key for safe retries.
        recompute: Bypass the result cache.
    """

    input_text: str | None = None
    images: tuple[str, ...] = ()
    mode: AnalysisMode | None = None
    toggles: AnalysisToggles = field(default_factory=AnalysisToggles)
    idempotency_key: str | None = None
    recompute: bool = False


@dataclass(frozen=True)
class SubmissionResult:
    """Response of a submission.

    Attributes:
        status_code: 202 when queued, 200 for a cache hit, or the stored
            status of a replayed response.
        body: JSON-safe response body.
        replayed: True when returned from an idempotency record.
    """

    status_code: int
    body: dict[str, Any]
    replayed: bool = False


@dataclass(frozen=True)
class _Charge:
    billed: int
    credits_remaining: int
    spend_entry_id: uuid.UUID | None
    free_quota_used: bool


# =============================================================================
# Orchestrator
# =============================================================================


class AnalysisOrchestrator:
    """Runs one analysis submission through the request lifecycle.

    The orchestrator commits at each stage boundary on the session it is
    given: reset, idempotency claim, charge, record, stored response.

    Args:
        db: Async database session.
        pricing: Pricing table.
        dispatcher: Background dispatcher for the AI call.
        cache: Result cache, or None to disable caching.
        idempotency_ttl: How long a claimed key stays valid.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        pricing: PricingConfig,
        dispatcher: AnalysisDispatcher,
        cache: AnalysisCache | None = None,
        idempotency_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self._db = db
        self._pricing = pricing
        self._dispatcher = dispatcher
        self._cache = cache
        self._idempotency_ttl = idempotency_ttl

    async def submit(
        self,
        account_id: uuid.UUID,
        submission: AnalysisSubmission,
        now: datetime | None = None,
    ) -> SubmissionResult:
        """Submit an analysis.

        Args:
            account_id: Requesting account.
            submission: The request.
            now: Reference time (defaults to current UTC time).

        Returns:
            SubmissionResult (queued, cache hit, or replayed response).

        Raises:
            ValidationError: Missing or oversized input (no side effects).
            UpgradeRequiredError: Mode or images not available on the tier.
            QuotaExhaustedError: Free monthly analysis already used.
            InsufficientCreditsError: Balance does not cover the charge.
            ConflictError: Same idempotency key still in progress.
            PersistenceError: Record could not be stored; charge compensated.
        """
        now = now or datetime.now(UTC)
        await AccountService(self._db, self._pricing).refresh_account(account_id, now)

        claim_id: uuid.UUID | None = None
        if submission.idempotency_key:
            replay, claim_id = await self._claim_key(
                account_id, submission.idempotency_key, now
            )
            if replay is not None:
                return replay

        try:
            result = await self._run(account_id, submission, now)
        except Exception:
            if claim_id is not None:
                await self._release_claim(claim_id)
            raise

        if claim_id is not None:
            await self._store_claim_response(claim_id, result)
        return result

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def _run(
        self,
        account_id: uuid.UUID,
        submission: AnalysisSubmission,
        now: datetime,
    ) -> SubmissionResult:
        account = await AccountRepository.get_by_id(self._db, account_id)
        assert account is not None, "account checked at submission start"
        tier = Tier(account.tier)
        policy = self._pricing.policy_for(tier)
        text = (submission.input_text or "").strip()
        images = tuple(ref.strip() for ref in submission.images if ref.strip())

        self._validate(account, policy, text, images, submission.mode)

        decision = route_mode(
            tier,
            len(text),
            bool(images),
            submission.toggles,
            submission.mode,
            self._pricing,
        )
        quote = calculate_credits(
            tier, decision.mode, text, images, submission.toggles, self._pricing
        )
        fingerprint = compute_fingerprint(
            account.id,
            text,
            decision.mode,
            decision.model,
            submission.toggles,
            images,
        )

        if self._cache is not None and not submission.recompute:
            cached = await self._cache.lookup(
                self._db, account_id=account.id, fingerprint=fingerprint, now=now
            )
            if cached is not None:
                return SubmissionResult(
                    status_code=200,
                    body={
                        "analysis_id": str(cached.id),
                        "status": cached.status,
                        "credits_charged": 0,
                        "credits_remaining": account.balance,
                        "resolved_mode": decision.mode.value,
                        "resolved_model": decision.model,
                        "breakdown": quote.breakdown.to_dict(),
                        "cached": True,
                        "result": cached.result,
                    },
                )

        charge = await self._charge(account, policy, quote, decision, fingerprint, now)
        analysis_id = await self._persist(
            account, submission, text, images, decision, quote, fingerprint, charge
        )

        self._dispatcher.dispatch(
            AnalysisJob(
                analysis_id=analysis_id,
                account_id=account.id,
                tier=tier,
                mode=decision.mode,
                model=decision.model,
                input_text=text,
                image_refs=images,
                toggles=submission.toggles,
                credits_charged=charge.billed,
                spend_entry_id=charge.spend_entry_id,
                free_quota_used=charge.free_quota_used,
            )
        )
        logger.info(
            "Analysis %s queued for account %s (%s, %d credits)",
            analysis_id,
            account.id,
            decision.mode.value,
            charge.billed,
        )
        return SubmissionResult(
            status_code=202,
            body={
                "analysis_id": str(analysis_id),
                "status": "queued",
                "credits_charged": charge.billed,
                "credits_remaining": charge.credits_remaining,
                "resolved_mode": decision.mode.value,
                "resolved_model": decision.model,
                "breakdown": quote.breakdown.to_dict(),
                "estimated_tokens": quote.estimated_tokens,
                "toggles_ignored": decision.toggles_ignored,
                "cached": False,
            },
        )

    def _validate(
        self,
        account: Account,
        policy: TierPolicy,
        text: str,
        images: tuple[str, ...],
        requested_mode: AnalysisMode | None,
    ) -> None:
        """Reject requests the account may not make. Writes nothing."""
        if not text and not images:
            raise ValidationError(
                "Provide message text or at least one image",
                details=[{"field": "input_text"}],
            )

        effective_length = len(text) + len(images) * self._pricing.image_placeholder_chars
        if effective_length > self._pricing.max_input_chars:
            raise InputTooLargeError(self._pricing.max_input_chars, effective_length)

        tier = policy.tier
        if images and not policy.images_allowed:
            raise UpgradeRequiredError(
                tier.value, "images", "Image analysis is not available on your plan"
            )
        if tier is Tier.FREE and requested_mode not in (None, AnalysisMode.SNAPSHOT):
            raise UpgradeRequiredError(
                tier.value,
                f"{requested_mode.value}_mode",
                "Free accounts can only run snapshot analyses",
            )
        if requested_mode is AnalysisMode.DEEP and not policy.deep_allowed:
            raise UpgradeRequiredError(
                tier.value, "deep_mode", "Deep analysis is not available on your plan"
            )

        limit = policy.monthly_free_analyses
        if tier is Tier.FREE and account.free_monthly_uses >= limit:
            raise QuotaExhaustedError(limit, account.free_monthly_uses)

    async def _charge(
        self,
        account: Account,
        policy: TierPolicy,
        quote: CreditQuote,
        decision: RoutingDecision,
        fingerprint: str,
        now: datetime,
    ) -> _Charge:
        """Consume the free quota or reserve credits, then commit."""
        if policy.tier is Tier.FREE:
            limit = policy.monthly_free_analyses
            used = await AccountRepository.mark_free_use(
                self._db, account_id=account.id, monthly_limit=limit, now=now
            )
            if not used:
                await self._db.rollback()
                raise QuotaExhaustedError(limit, limit)
            charge = _Charge(
                billed=0,
                credits_remaining=account.balance,
                spend_entry_id=None,
                free_quota_used=True,
            )
        elif quote.total_credits > 0:
            breakdown = quote.breakdown.to_dict()
            try:
                reserved = await Ledger(self._db).reserve(
                    account.id,
                    quote.total_credits,
                    detail={
                        "breakdown": breakdown,
                        "mode": decision.mode.value,
                        "model": decision.model,
                        "fingerprint": fingerprint,
                    },
                    breakdown=breakdown,
                )
            except Exception:
                await self._db.rollback()
                raise
            charge = _Charge(
                billed=quote.total_credits,
                credits_remaining=reserved.new_balance,
                spend_entry_id=reserved.entry_id,
                free_quota_used=False,
            )
        else:
            charge = _Charge(
                billed=0,
                credits_remaining=account.balance,
                spend_entry_id=None,
                free_quota_used=False,
            )

        try:
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            logger.error("Charge for account %s could not be committed", account.id)
            raise PersistenceError() from e
        return charge

    async def _persist(
        self,
        account: Account,
        submission: AnalysisSubmission,
        text: str,
        images: tuple[str, ...],
        decision: RoutingDecision,
        quote: CreditQuote,
        fingerprint: str,
        charge: _Charge,
    ) -> uuid.UUID:
        """Write the queued record; compensate the charge if that fails."""
        analysis_id = uuid.uuid4()
        try:
            await AnalysisRepository.create(
                self._db,
                analysis_id=analysis_id,
                account_id=account.id,
                input_text=text or None,
                image_refs=list(images),
                requested_mode=submission.mode.value if submission.mode else None,
                resolved_mode=decision.mode.value,
                model=decision.model,
                toggles={
                    "deep": submission.toggles.deep,
                    "explanation": submission.toggles.explanation,
                },
                credits_charged=charge.billed,
                tokens_estimated=quote.estimated_tokens,
                fingerprint=fingerprint,
                spend_entry_id=charge.spend_entry_id,
            )
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            logger.error("Analysis record for account %s could not be stored", account.id)
            await self._compensate(account.id, charge, analysis_id)
            raise PersistenceError() from e
        return analysis_id

    async def _compensate(
        self,
        account_id: uuid.UUID,
        charge: _Charge,
        analysis_id: uuid.UUID,
    ) -> None:
        """Undo a committed charge after the record could not be written."""
        try:
            if charge.spend_entry_id is not None:
                await Ledger(self._db).refund(
                    account_id,
                    charge.billed,
                    spend_entry_id=charge.spend_entry_id,
                    reason="persistence_error",
                    analysis_id=analysis_id,
                )
            elif charge.free_quota_used:
                await AccountRepository.undo_free_use(self._db, account_id=account_id)
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            logger.critical(
                "Compensating refund failed, manual reconciliation needed: "
                "account=%s amount=%d spend_entry=%s free_quota_used=%s analysis=%s",
                account_id,
                charge.billed,
                charge.spend_entry_id,
                charge.free_quota_used,
                analysis_id,
                exc_info=True,
            )

    # -------------------------------------------------------------------------
    # Idempotency
    # -------------------------------------------------------------------------

    async def _claim_key(
        self,
        account_id: uuid.UUID,
        key: str,
        now: datetime,
    ) -> tuple[SubmissionResult | None, uuid.UUID | None]:
        """Claim an idempotency key or find its stored response.

        Returns:
            (replayed result, None) for a completed key, or (None, claim id)
            for a fresh claim.

        Raises:
            ConflictError: If the key is claimed but has no response yet.
        """
        existing = await IdempotencyRepository.get(self._db, account_id=account_id, key=key)
        if existing is not None and as_utc(existing.expires_at) <= now:
            await IdempotencyRepository.release(self._db, existing.id)
            await self._db.commit()
            existing = None

        if existing is None:
            try:
                record = await IdempotencyRepository.claim(
                    self._db,
                    account_id=account_id,
                    key=key,
                    expires_at=now + self._idempotency_ttl,
                )
                claim_id = record.id
                await self._db.commit()
                return None, claim_id
            except IntegrityError:
                await self._db.rollback()
                existing = await IdempotencyRepository.get(
                    self._db, account_id=account_id, key=key
                )

        if existing is not None and existing.response is not None:
            logger.info("Idempotent replay for account %s", account_id)
            return (
                SubmissionResult(
                    status_code=existing.status_code or 200,
                    body=existing.response,
                    replayed=True,
                ),
                None,
            )
        raise ConflictError(
            "IDEMPOTENCY_IN_PROGRESS",
            "A request with this idempotency key is still being processed",
        )

    async def _store_claim_response(
        self, claim_id: uuid.UUID, result: SubmissionResult
    ) -> None:
        """Record the response for replays.

        The analysis is already charged and dispatched, so a failed write is
        logged and the result still returned. The claim then stays pending
        and retries with the key get IDEMPOTENCY_IN_PROGRESS until it expires.
        """
        try:
            await IdempotencyRepository.store_response(
                self._db,
                record_id=claim_id,
                response=result.body,
                status_code=result.status_code,
            )
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            logger.error(
                "Could not store response for idempotency claim %s (analysis %s)",
                claim_id,
                result.body.get("analysis_id"),
                exc_info=True,
            )

    async def _release_claim(self, claim_id: uuid.UUID) -> None:
        try:
            await self._db.rollback()
            await IdempotencyRepository.release(self._db, claim_id)
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            logger.warning("Could not release idempotency claim %s", claim_id, exc_info=True)
