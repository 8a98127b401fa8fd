"""Analysis request model.

One record per charged analysis. Created as ``queued`` together with the
charge bookkeeping, then moved to ``done`` or ``failed`` by the background
processor. ``credits_charged`` is fixed at creation and never rewritten.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from messagemind.models.base import Base, JSONType, TimestampMixin

ANALYSIS_STATUSES = ("queued", "done", "failed")


class AnalysisRequest(Base, TimestampMixin):
    """A user-submitted analysis.

    Attributes:
        id: UUID primary key.
        account_id: FK to accounts.
        input_text: Submitted text (nullable for image-only requests).
        image_refs: List of image references.
        requested_mode: Mode the user asked for (nullable).
        resolved_mode: Mode the analysis runs in.
        model: Resolved model identifier.
        toggles: Toggle flags as submitted.
        credits_charged: Credits debited at submission.
        tokens_estimated: Advisory token estimate.
        tokens_actual: Tokens reported by the provider once done.
        fingerprint: SHA-256 request fingerprint for the result cache.
        status: queued, done or failed.
        result: Validated analysis payload (nullable until done).
        spend_entry_id: Ledger entry of the charge, for refund traceability.
        refund_entry_id: Ledger entry of the refund, when one was issued.
        failure_reason: Internal failure classification (never shown raw).
        completed_at: When the record reached a terminal status.
    """

    __tablename__ = "analysis_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'done', 'failed')",
            name="ck_analysis_status_valid",
        ),
        CheckConstraint(
            "resolved_mode IN ('snapshot', 'expanded', 'deep')",
            name="ck_analysis_mode_valid",
        ),
        CheckConstraint("credits_charged >= 0", name="ck_analysis_credits_nonneg"),
        Index(
            "ix_analysis_requests_cache_lookup",
            "account_id",
            "fingerprint",
            "status",
        ),
        Index("ix_analysis_requests_account_created", "account_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    input_text: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    image_refs: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    requested_mode: Mapped[str | None] = mapped_column(
        String(10),
        nullable=True,
    )
    resolved_mode: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    model: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    toggles: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    credits_charged: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    tokens_estimated: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    tokens_actual: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    fingerprint: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="queued",
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    spend_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("ledger_entries.id", ondelete="RESTRICT"),
        nullable=True,
    )
    refund_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(),
        ForeignKey("ledger_entries.id", ondelete="RESTRICT"),
        nullable=True,
    )
    failure_reason: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
