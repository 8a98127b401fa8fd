"""Idempotency record model.

A client-supplied idempotency key is claimed by inserting a row under a
unique (account_id, idempotency_key) constraint before any charge. The
first response is stored on the row and replayed for repeats until the
record expires.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from messagemind.models.base import Base, JSONType, utc_now


class IdempotencyRecord(Base):
    """Claimed idempotency key and its stored response.

    Attributes:
        id: UUID primary key.
        account_id: FK to accounts.
        idempotency_key: Client-supplied key.
        response: Stored first response body (None while in progress).
        status_code: HTTP status of the stored response.
        created_at: When the key was claimed.
        expires_at: After this time the key may be claimed again.
    """

    __tablename__ = "idempotency_records"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "idempotency_key", name="uq_idempotency_account_key"
        ),
        Index("ix_idempotency_records_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    response: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    status_code: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )
