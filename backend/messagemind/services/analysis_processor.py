"""Background processing of queued analyses.

The AI call runs with no open transaction and no lock on the account.
Only after it returns does the processor open a session to record the
outcome: ``done`` with the validated result, or ``failed`` together with
a refund of the charged credits in the same transaction.
"""

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from messagemind.prompts.prompt_templates import (
    TASK_FOR_MODE,
    build_analysis_messages,
    get_prompt_template,
)
from messagemind.providers.config import ProviderConfig
from messagemind.providers.errors import ProviderError
from messagemind.providers.llm.base import LLMProvider, LLMResponse
from messagemind.providers.retry import with_retries
from messagemind.repositories.account_repository import AccountRepository
from messagemind.repositories.analysis_repository import AnalysisRepository
from messagemind.services.ledger import Ledger
from messagemind.services.pricing import AnalysisMode, AnalysisToggles, Tier
from messagemind.services.response_parsing import (
    MalformedOutputError,
    parse_analysis_output,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================


class AnalysisOutcome(str, Enum):
    """Terminal result of processing one analysis.

    Values:
        DONE: Result validated and stored.
        FAILED: Marked failed, charge refunded if any.
        SKIPPED: Record was no longer queued; nothing written.
    """

    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailureReason(str, Enum):
    """Internal failure classification stored on failed records."""

    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider_error"
    MALFORMED_OUTPUT = "malformed_output"
    PERSISTENCE_ERROR = "persistence_error"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class AnalysisJob:
    """Everything the processor needs, captured at dispatch time.

    Attributes:
        analysis_id: Queued record to complete.
        account_id: Owning account.
        tier: Account tier (selects token budgets).
        mode: Resolved analysis mode.
        model: Resolved model identifier.
        input_text: Trimmed message text.
        image_refs: Image references.
        toggles: Request toggles.
        credits_charged: Credits reserved for this analysis.
        spend_entry_id: Ledger entry of the reserve (None when nothing charged).
        free_quota_used: Whether a free-tier monthly use was consumed.
    """

    analysis_id: uuid.UUID
    account_id: uuid.UUID
    tier: Tier
    mode: AnalysisMode
    model: str
    input_text: str
    image_refs: tuple[str, ...] = ()
    toggles: AnalysisToggles = field(default_factory=AnalysisToggles)
    credits_charged: int = 0
    spend_entry_id: uuid.UUID | None = None
    free_quota_used: bool = False


# =============================================================================
# Processor
# =============================================================================


class AnalysisProcessor:
    """Runs the AI call for a queued analysis and records the outcome.

    Args:
        session_factory: Async session factory; each outcome write uses its
            own session.
        provider: LLM provider.
        timeout_seconds: Upper bound on the AI call including retries.
        retry_config: Retry policy for transient provider errors.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: LLMProvider,
        *,
        timeout_seconds: float,
        retry_config: ProviderConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._timeout_seconds = timeout_seconds
        self._retry_config = retry_config or ProviderConfig(max_retries=0)

    async def process(self, job: AnalysisJob) -> AnalysisOutcome:
        """Process one queued analysis to a terminal status.

        Args:
            job: The dispatched analysis.

        Returns:
            AnalysisOutcome describing what was written.
        """
        try:
            response = await asyncio.wait_for(
                self._call_provider(job), timeout=self._timeout_seconds
            )
            result = parse_analysis_output(response.content, job.mode)
        except TimeoutError:
            logger.warning(
                "Analysis %s timed out after %.1fs",
                job.analysis_id,
                self._timeout_seconds,
            )
            return await self._fail(job, FailureReason.TIMEOUT)
        except ProviderError as e:
            logger.warning(
                "Analysis %s provider failure: %s", job.analysis_id, type(e).__name__
            )
            return await self._fail(job, FailureReason.PROVIDER_ERROR)
        except MalformedOutputError as e:
            logger.warning(
                "Analysis %s returned malformed output (%s)", job.analysis_id, e.reason
            )
            return await self._fail(job, FailureReason.MALFORMED_OUTPUT)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error processing analysis %s", job.analysis_id)
            return await self._fail(job, FailureReason.INTERNAL_ERROR)

        try:
            return await self._complete(job, result, response)
        except SQLAlchemyError:
            logger.exception("Could not store result of analysis %s", job.analysis_id)
            return await self._fail(job, FailureReason.PERSISTENCE_ERROR)

    async def _call_provider(self, job: AnalysisJob) -> LLMResponse:
        template = get_prompt_template(job.mode, job.tier, job.toggles)
        messages = build_analysis_messages(template, job.input_text, job.image_refs)
        task = TASK_FOR_MODE[job.mode]

        async def _attempt() -> LLMResponse:
            return await self._provider.complete(
                messages,
                task,
                max_tokens=template.max_tokens,
                temperature=template.temperature,
                json_mode=True,
                model_override=job.model,
            )

        return await with_retries(
            _attempt, self._retry_config, label=f"analysis {job.analysis_id}"
        )

    async def _complete(
        self,
        job: AnalysisJob,
        result: dict[str, Any],
        response: LLMResponse,
    ) -> AnalysisOutcome:
        async with self._session_factory() as db:
            updated = await AnalysisRepository.mark_done(
                db,
                analysis_id=job.analysis_id,
                result=result,
                tokens_actual=response.total_tokens,
                now=datetime.now(UTC),
            )
            if not updated:
                await db.rollback()
                logger.warning("Analysis %s was no longer queued", job.analysis_id)
                return AnalysisOutcome.SKIPPED
            await db.commit()

        logger.info(
            "Analysis %s done (%d tokens)", job.analysis_id, response.total_tokens
        )
        return AnalysisOutcome.DONE

    async def _fail(self, job: AnalysisJob, reason: FailureReason) -> AnalysisOutcome:
        """Mark the record failed and give back what was charged.

        The refund and the status change commit together, and the status
        change is conditional on ``queued``, so a record is refunded at
        most once.
        """
        try:
            async with self._session_factory() as db:
                refund_entry_id = None
                if job.credits_charged > 0 and job.spend_entry_id is not None:
                    refund = await Ledger(db).refund(
                        job.account_id,
                        job.credits_charged,
                        spend_entry_id=job.spend_entry_id,
                        reason=reason.value,
                        analysis_id=job.analysis_id,
                    )
                    refund_entry_id = refund.entry_id
                elif job.free_quota_used:
                    await AccountRepository.undo_free_use(db, account_id=job.account_id)

                updated = await AnalysisRepository.mark_failed(
                    db,
                    analysis_id=job.analysis_id,
                    failure_reason=reason.value,
                    refund_entry_id=refund_entry_id,
                    now=datetime.now(UTC),
                )
                if not updated:
                    await db.rollback()
                    logger.warning("Analysis %s was no longer queued", job.analysis_id)
                    return AnalysisOutcome.SKIPPED
                await db.commit()
        except SQLAlchemyError:
            logger.critical(
                "Refund after failed analysis could not be recorded: account=%s "
                "amount=%d spend_entry=%s analysis=%s reason=%s",
                job.account_id,
                job.credits_charged,
                job.spend_entry_id,
                job.analysis_id,
                reason.value,
                exc_info=True,
            )
            return AnalysisOutcome.FAILED

        logger.info("Analysis %s failed (%s)", job.analysis_id, reason.value)
        return AnalysisOutcome.FAILED


# =============================================================================
# Dispatcher
# =============================================================================


class AnalysisDispatcher:
    """Schedules analysis processing as asyncio tasks.

    Lifecycle:
    - dispatch() starts one task per analysis and returns immediately.
    - drain() waits for every in-flight task (shutdown and tests).

    Args:
        processor: Processor that runs each job.
    """

    def __init__(self, processor: AnalysisProcessor) -> None:
        self._processor = processor
        self._tasks: set[asyncio.Task[AnalysisOutcome]] = set()

    @property
    def in_flight(self) -> int:
        """Number of analyses still being processed."""
        return len(self._tasks)

    def dispatch(self, job: AnalysisJob) -> asyncio.Task[AnalysisOutcome]:
        """Start processing a job in the background.

        Must be called from an async context (running event loop).

        Args:
            job: The analysis to process.

        Returns:
            The created task.
        """
        task = asyncio.create_task(
            self._processor.process(job), name=f"analysis-{job.analysis_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Analysis %s dispatched (%s)", job.analysis_id, job.mode.value)
        return task

    async def drain(self) -> Sequence[AnalysisOutcome]:
        """Wait for all in-flight analyses to finish.

        Returns:
            Outcomes of the tasks that were in flight.
        """
        if not self._tasks:
            return []
        results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return [r for r in results if isinstance(r, AnalysisOutcome)]
