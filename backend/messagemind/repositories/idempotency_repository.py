"""Repository for idempotency key claims."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.models.idempotency import IdempotencyRecord


class IdempotencyRepository:
    """Stateless repository for IdempotencyRecord rows.

    ``claim`` relies on the unique (account_id, idempotency_key) constraint:
    a concurrent duplicate fails with IntegrityError at flush time.
    """

    @staticmethod
    async def get(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        key: str,
    ) -> IdempotencyRecord | None:
        """Fetch the record for an account and key."""
        result = await db.execute(
            select(IdempotencyRecord)
            .where(
                IdempotencyRecord.account_id == account_id,
                IdempotencyRecord.idempotency_key == key,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def claim(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        key: str,
        expires_at: datetime,
    ) -> IdempotencyRecord:
        """Insert a pending claim for the key.

        Args:
            db: Async database session.
            account_id: Account making the request.
            key: Client-supplied idempotency key.
            expires_at: When the claim stops applying.

        Returns:
            Created IdempotencyRecord with no stored response.

        Raises:
            sqlalchemy.exc.IntegrityError: If the key is already claimed.
        """
        record = IdempotencyRecord(
            account_id=account_id,
            idempotency_key=key,
            expires_at=expires_at,
        )
        db.add(record)
        await db.flush()
        return record

    @staticmethod
    async def store_response(
        db: AsyncSession,
        *,
        record_id: uuid.UUID,
        response: dict[str, Any],
        status_code: int,
    ) -> None:
        """Attach the first response to a claimed key."""
        await db.execute(
            update(IdempotencyRecord)
            .where(IdempotencyRecord.id == record_id)
            .values(response=response, status_code=status_code)
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def release(db: AsyncSession, record_id: uuid.UUID) -> None:
        """Delete a claim so the key can be retried."""
        await db.execute(
            delete(IdempotencyRecord)
            .where(IdempotencyRecord.id == record_id)
            .execution_options(synchronize_session=False)
        )
