"""Create accounts, ledger, analysis and idempotency tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

Ledger entries and analysis records reference accounts with ON DELETE
RESTRICT: accounts are soft-deactivated, and financial history is never
removed with them.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Shared column types
_PG_UUID = postgresql.UUID(as_uuid=True)
_UUID_DEFAULT = sa.text("gen_random_uuid()")
_JSONB = postgresql.JSONB()


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create the credit metering schema."""
    # 1. accounts
    op.create_table(
        "accounts",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("tier", sa.String(10), nullable=False),
        sa.Column("balance", sa.Integer, server_default="0", nullable=False),
        sa.Column("daily_allowance", sa.Integer, server_default="0", nullable=False),
        sa.Column("timezone", sa.String(64), server_default="UTC", nullable=False),
        sa.Column("last_daily_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("free_monthly_uses", sa.Integer, server_default="0", nullable=False),
        sa.Column("free_last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="ck_accounts_balance_nonneg"),
        sa.CheckConstraint("daily_allowance >= 0", name="ck_accounts_allowance_nonneg"),
        sa.CheckConstraint(
            "free_monthly_uses >= 0", name="ck_accounts_free_uses_nonneg"
        ),
        sa.CheckConstraint(
            "tier IN ('free', 'pro', 'plus', 'max')",
            name="ck_accounts_tier_valid",
        ),
    )

    # 2. ledger_entries (append-only)
    op.create_table(
        "ledger_entries",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column(
            "account_id",
            _PG_UUID,
            sa.ForeignKey("accounts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("balance_after", sa.Integer, nullable=False),
        sa.Column("detail", _JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column(
            "reference_entry_id",
            _PG_UUID,
            sa.ForeignKey("ledger_entries.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "kind IN ('signup_bonus', 'purchase', 'action_spend', 'refund', "
            "'daily_reset')",
            name="ck_ledger_kind_valid",
        ),
        sa.CheckConstraint("balance_after >= 0", name="ck_ledger_balance_after_nonneg"),
    )

    # 3. analysis_requests
    op.create_table(
        "analysis_requests",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column(
            "account_id",
            _PG_UUID,
            sa.ForeignKey("accounts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("input_text", sa.Text, nullable=True),
        sa.Column(
            "image_refs", _JSONB, server_default=sa.text("'[]'::jsonb"), nullable=False
        ),
        sa.Column("requested_mode", sa.String(10), nullable=True),
        sa.Column("resolved_mode", sa.String(10), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column(
            "toggles", _JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False
        ),
        sa.Column("credits_charged", sa.Integer, nullable=False),
        sa.Column("tokens_estimated", sa.Integer, nullable=False),
        sa.Column("tokens_actual", sa.Integer, nullable=True),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("status", sa.String(10), server_default="queued", nullable=False),
        sa.Column("result", _JSONB, nullable=True),
        sa.Column(
            "spend_entry_id",
            _PG_UUID,
            sa.ForeignKey("ledger_entries.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column(
            "refund_entry_id",
            _PG_UUID,
            sa.ForeignKey("ledger_entries.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("failure_reason", sa.String(50), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('queued', 'done', 'failed')",
            name="ck_analysis_status_valid",
        ),
        sa.CheckConstraint(
            "resolved_mode IN ('snapshot', 'expanded', 'deep')",
            name="ck_analysis_mode_valid",
        ),
        sa.CheckConstraint("credits_charged >= 0", name="ck_analysis_credits_nonneg"),
    )

    # 4. idempotency_records
    op.create_table(
        "idempotency_records",
        sa.Column("id", _PG_UUID, server_default=_UUID_DEFAULT, primary_key=True),
        sa.Column(
            "account_id",
            _PG_UUID,
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column("response", _JSONB, nullable=True),
        sa.Column("status_code", sa.Integer, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "account_id", "idempotency_key", name="uq_idempotency_account_key"
        ),
    )

    # 5. Indexes
    op.create_index(
        "ix_ledger_entries_account_created",
        "ledger_entries",
        ["account_id", sa.text("created_at DESC")],
    )
    op.create_index(
        "ix_analysis_requests_account_created",
        "analysis_requests",
        ["account_id", sa.text("created_at DESC")],
    )
    op.create_index(
        "ix_analysis_requests_cache_lookup",
        "analysis_requests",
        ["account_id", "fingerprint", "status"],
    )
    op.create_index(
        "ix_idempotency_records_expires",
        "idempotency_records",
        ["expires_at"],
    )


def downgrade() -> None:
    """Drop the credit metering schema."""
    # Drop indexes first
    op.drop_index("ix_idempotency_records_expires", table_name="idempotency_records")
    op.drop_index(
        "ix_analysis_requests_cache_lookup",
        table_name="analysis_requests",
    )
    op.drop_index(
        "ix_analysis_requests_account_created",
        table_name="analysis_requests",
    )
    op.drop_index("ix_ledger_entries_account_created", table_name="ledger_entries")

    # Drop tables (reverse dependency order)
    op.drop_table("idempotency_records")
    op.drop_table("analysis_requests")
    op.drop_table("ledger_entries")
    op.drop_table("accounts")
