"""Request fingerprinting and result-cache lookup.

A fingerprint identifies a semantically identical repeat request:
SHA-256 over (account, normalized text, resolved mode, model, toggles,
image references).
Normalization absorbs case, surrounding and repeated whitespace, and
punctuation so trivially reformatted submissions share a fingerprint.

The cache lookup is read-only. A hit returns a prior completed analysis
for the same account and fingerprint inside the retention window; it
never creates ledger entries or analysis records.
"""

import hashlib
import json
import logging
import re
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from messagemind.models.analysis import AnalysisRequest
from messagemind.repositories.analysis_repository import AnalysisRepository
from messagemind.services.pricing import AnalysisMode, AnalysisToggles

logger = logging.getLogger(__name__)

_WHITESPACE_RUN = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\s]")


def normalize_input(text: str | None) -> str:
    """Normalize input text before hashing.

    Lowercases, trims, collapses whitespace runs to single spaces and
    strips punctuation. Punctuation is stripped after collapsing, then
    whitespace is collapsed again so " a , b " and "a b" agree.

    Args:
        text: Raw input text (None treated as empty).

    Returns:
        Normalized text.
    """
    lowered = (text or "").lower().strip()
    collapsed = _WHITESPACE_RUN.sub(" ", lowered)
    stripped = _NON_WORD.sub("", collapsed)
    return _WHITESPACE_RUN.sub(" ", stripped).strip()


def compute_fingerprint(
    account_id: uuid.UUID,
    input_text: str | None,
    mode: AnalysisMode,
    model: str,
    toggles: AnalysisToggles,
    image_refs: Sequence[str] = (),
) -> str:
    """Compute the deterministic fingerprint of an analysis request.

    Image references are part of the input: two image-only requests with
    different screenshots must not share a fingerprint.

    Args:
        account_id: Requesting account.
        input_text: Raw input text (normalized here).
        mode: Resolved analysis mode.
        model: Resolved model identifier.
        toggles: Request toggles.
        image_refs: Image references, in submission order (order is
            significant: screenshots read as a sequence).

    Returns:
        64-character hex SHA-256 digest.
    """
    # JSON array: element boundaries survive commas and pipes inside
    # image references
    payload = [
        str(account_id),
        normalize_input(input_text),
        mode.value,
        model,
        toggles.deep,
        toggles.explanation,
        [ref.strip() for ref in image_refs],
    ]
    encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class AnalysisCache:
    """Read-only lookup of completed analyses by fingerprint.

    Args:
        retention_days: How far back a completed analysis may be reused.
    """

    def __init__(self, retention_days: int) -> None:
        self._retention = timedelta(days=retention_days)

    async def lookup(
        self,
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        fingerprint: str,
        now: datetime | None = None,
    ) -> AnalysisRequest | None:
        """Find the most recent completed analysis with this fingerprint.

        Args:
            db: Async database session.
            account_id: Account that must own the cached analysis.
            fingerprint: Request fingerprint.
            now: Reference time (defaults to current UTC time).

        Returns:
            The cached AnalysisRequest, or None on a miss.
        """
        cutoff = (now or datetime.now(UTC)) - self._retention
        cached = await AnalysisRepository.find_completed_by_fingerprint(
            db,
            account_id=account_id,
            fingerprint=fingerprint,
            created_after=cutoff,
        )
        if cached is not None:
            logger.info(
                "Cache hit for account %s (analysis %s)", account_id, cached.id
            )
        return cached
