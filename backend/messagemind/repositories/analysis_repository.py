"""Repository for analysis request records."""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.models.analysis import AnalysisRequest


class AnalysisRepository:
    """Stateless repository for AnalysisRequest rows.

    Status transitions are conditional on ``status = 'queued'`` so a record
    reaches exactly one terminal status even if two workers race.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        analysis_id: uuid.UUID | None = None,
        account_id: uuid.UUID,
        input_text: str | None,
        image_refs: list[str],
        requested_mode: str | None,
        resolved_mode: str,
        model: str,
        toggles: dict[str, Any],
        credits_charged: int,
        tokens_estimated: int,
        fingerprint: str,
        spend_entry_id: uuid.UUID | None,
    ) -> AnalysisRequest:
        """Create a queued analysis record.

        Args:
            db: Async database session.
            analysis_id: Pre-assigned id (generated when None).
            account_id: Owning account.
            input_text: Submitted text, if any.
            image_refs: Submitted image references.
            requested_mode: Mode the user asked for.
            resolved_mode: Mode chosen by routing.
            model: Resolved model identifier.
            toggles: Toggle flags as submitted.
            credits_charged: Credits debited for this request.
            tokens_estimated: Advisory token estimate.
            fingerprint: Cache fingerprint.
            spend_entry_id: Ledger entry of the charge (None for free quota).

        Returns:
            Created AnalysisRequest in ``queued`` status.
        """
        analysis = AnalysisRequest(
            id=analysis_id or uuid.uuid4(),
            account_id=account_id,
            input_text=input_text,
            image_refs=image_refs,
            requested_mode=requested_mode,
            resolved_mode=resolved_mode,
            model=model,
            toggles=toggles,
            credits_charged=credits_charged,
            tokens_estimated=tokens_estimated,
            fingerprint=fingerprint,
            spend_entry_id=spend_entry_id,
            status="queued",
        )
        db.add(analysis)
        await db.flush()
        await db.refresh(analysis)
        return analysis

    @staticmethod
    async def get_by_id(
        db: AsyncSession,
        analysis_id: uuid.UUID,
    ) -> AnalysisRequest | None:
        """Fetch a record by id, refreshing any stale session copy."""
        result = await db.execute(
            select(AnalysisRequest)
            .where(AnalysisRequest.id == analysis_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_for_account(
        db: AsyncSession,
        *,
        analysis_id: uuid.UUID,
        account_id: uuid.UUID,
    ) -> AnalysisRequest | None:
        """Fetch a record only if it belongs to the account."""
        result = await db.execute(
            select(AnalysisRequest)
            .where(
                AnalysisRequest.id == analysis_id,
                AnalysisRequest.account_id == account_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_by_account(
        db: AsyncSession,
        account_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
        status: str | None = None,
    ) -> tuple[list[AnalysisRequest], int]:
        """List records for an account, newest first.

        Args:
            db: Async database session.
            account_id: Account to list.
            offset: Rows to skip.
            limit: Maximum rows to return.
            status: Optional status filter.

        Returns:
            Tuple of (records, total matching count).
        """
        conditions = [AnalysisRequest.account_id == account_id]
        if status is not None:
            conditions.append(AnalysisRequest.status == status)

        total_result = await db.execute(
            select(func.count()).select_from(AnalysisRequest).where(*conditions)
        )
        total = total_result.scalar_one()

        result = await db.execute(
            select(AnalysisRequest)
            .where(*conditions)
            .order_by(AnalysisRequest.created_at.desc(), AnalysisRequest.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    @staticmethod
    async def find_completed_by_fingerprint(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        fingerprint: str,
        created_after: datetime,
    ) -> AnalysisRequest | None:
        """Find the newest completed record with a matching fingerprint.

        Args:
            db: Async database session.
            account_id: Account scope (results are never shared).
            fingerprint: Request fingerprint.
            created_after: Retention cutoff; older records are ignored.

        Returns:
            Most recent ``done`` record within retention, or None.
        """
        result = await db.execute(
            select(AnalysisRequest)
            .where(
                AnalysisRequest.account_id == account_id,
                AnalysisRequest.fingerprint == fingerprint,
                AnalysisRequest.status == "done",
                AnalysisRequest.result.is_not(None),
                AnalysisRequest.created_at >= created_after,
            )
            .order_by(AnalysisRequest.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_done(
        db: AsyncSession,
        *,
        analysis_id: uuid.UUID,
        result: dict[str, Any],
        tokens_actual: int | None,
        now: datetime,
    ) -> bool:
        """Move a queued record to ``done``.

        Args:
            db: Async database session.
            analysis_id: Record to complete.
            result: Validated analysis payload.
            tokens_actual: Tokens reported by the provider.
            now: Completion time.

        Returns:
            True if the record was queued and is now done.
        """
        outcome = cast(
            CursorResult[Any],
            await db.execute(
                update(AnalysisRequest)
                .where(
                    AnalysisRequest.id == analysis_id,
                    AnalysisRequest.status == "queued",
                )
                .values(
                    status="done",
                    result=result,
                    tokens_actual=tokens_actual,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            ),
        )
        return outcome.rowcount > 0

    @staticmethod
    async def mark_failed(
        db: AsyncSession,
        *,
        analysis_id: uuid.UUID,
        failure_reason: str,
        refund_entry_id: uuid.UUID | None,
        now: datetime,
    ) -> bool:
        """Move a queued record to ``failed``.

        Args:
            db: Async database session.
            analysis_id: Record to fail.
            failure_reason: Internal failure classification.
            refund_entry_id: Ledger entry of the refund, if one was issued.
            now: Completion time.

        Returns:
            True if the record was queued and is now failed.
        """
        outcome = cast(
            CursorResult[Any],
            await db.execute(
                update(AnalysisRequest)
                .where(
                    AnalysisRequest.id == analysis_id,
                    AnalysisRequest.status == "queued",
                )
                .values(
                    status="failed",
                    failure_reason=failure_reason,
                    refund_entry_id=refund_entry_id,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            ),
        )
        return outcome.rowcount > 0
