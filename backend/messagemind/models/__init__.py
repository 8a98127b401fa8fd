"""SQLAlchemy ORM models for MessageMind.

All models are exported from this module for convenient imports:
    from messagemind.models import Account, LedgerEntry, ...

Models are organized by domain:
- account.py: Account (credit account per user)
- ledger.py: LedgerEntry (append-only balance mutations)
- analysis.py: AnalysisRequest (submitted analyses and results)
- idempotency.py: IdempotencyRecord (claimed keys and stored responses)
"""

from messagemind.models.account import Account
from messagemind.models.analysis import ANALYSIS_STATUSES, AnalysisRequest
from messagemind.models.base import Base, TimestampMixin
from messagemind.models.idempotency import IdempotencyRecord
from messagemind.models.ledger import LEDGER_KINDS, LedgerEntry

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Models
    "Account",
    "AnalysisRequest",
    "IdempotencyRecord",
    "LedgerEntry",
    # Enumerations
    "ANALYSIS_STATUSES",
    "LEDGER_KINDS",
]
