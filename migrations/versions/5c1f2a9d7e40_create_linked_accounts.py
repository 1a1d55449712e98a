"""Create linked accounts and M-Pesa callback ledger

Revision ID: 5c1f2a9d7e40
Revises:
Create Date: 2026-10-18 13:40:12.418233

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "5c1f2a9d7e40"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

PROVIDERS = ("mpesa", "bank", "deriv", "binance", "mt5", "etoro", "interactive_brokers")
STATUSES = ("pending", "active", "needs_verification", "inactive")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "linked_accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column(
            "provider", sa.Enum(*PROVIDERS, name="linked_account_provider"), nullable=False
        ),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("masked_number", sa.String(length=32), nullable=False),
        sa.Column("balance", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False),
        sa.Column(
            "status", sa.Enum(*STATUSES, name="linked_account_status"), nullable=False
        ),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column(
            "linked_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("platform", sa.String(length=50), nullable=True),
        sa.Column("external_account_id", sa.String(length=255), nullable=True),
        sa.Column("masked_api_key", sa.String(length=32), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_balance_access", sa.Boolean(), nullable=False),
        sa.Column("requires_manual_verification", sa.Boolean(), nullable=False),
        sa.Column("stk_checkout_id", sa.String(length=100), nullable=True),
        sa.Column("mpesa_receipt_number", sa.String(length=50), nullable=True),
        sa.Column("validated_with_real_api", sa.Boolean(), nullable=False),
        sa.Column("phone_number", sa.String(length=20), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("last_transaction", postgresql.JSONB(), nullable=True),
        sa.Column(
            "extra",
            postgresql.JSONB(),
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.CheckConstraint("balance >= 0", name="ck_linked_accounts_balance_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id",
            "provider",
            "external_account_id",
            name="uq_linked_accounts_user_provider_external_id",
        ),
    )
    op.create_index("ix_linked_accounts_user_id", "linked_accounts", ["user_id"])
    op.create_index("ix_linked_accounts_provider", "linked_accounts", ["provider"])
    op.create_index("ix_linked_accounts_status", "linked_accounts", ["status"])
    op.create_index(
        "ix_linked_accounts_external_account_id", "linked_accounts", ["external_account_id"]
    )
    op.create_index(
        "ix_linked_accounts_stk_checkout_id", "linked_accounts", ["stk_checkout_id"]
    )
    op.create_index("ix_linked_accounts_phone_number", "linked_accounts", ["phone_number"])
    # At most one default account per user
    op.create_index(
        "uq_linked_accounts_user_default",
        "linked_accounts",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "mpesa_callback_receipts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("checkout_request_id", sa.String(length=100), nullable=False),
        sa.Column("merchant_request_id", sa.String(length=100), nullable=True),
        sa.Column("result_code", sa.Integer(), nullable=False),
        sa.Column("result_description", sa.Text(), nullable=True),
        sa.Column("receipt_number", sa.String(length=50), nullable=True),
        sa.Column("linked_account_id", sa.Uuid(), nullable=True),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), server_default=sa.text("now()")
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "checkout_request_id",
            "result_code",
            name="uq_mpesa_callback_receipts_checkout_result",
        ),
    )
    op.create_index(
        "ix_mpesa_callback_receipts_checkout_request_id",
        "mpesa_callback_receipts",
        ["checkout_request_id"],
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(
        "ix_mpesa_callback_receipts_checkout_request_id",
        table_name="mpesa_callback_receipts",
    )
    op.drop_table("mpesa_callback_receipts")
    op.drop_index("uq_linked_accounts_user_default", table_name="linked_accounts")
    op.drop_index("ix_linked_accounts_phone_number", table_name="linked_accounts")
    op.drop_index("ix_linked_accounts_stk_checkout_id", table_name="linked_accounts")
    op.drop_index("ix_linked_accounts_external_account_id", table_name="linked_accounts")
    op.drop_index("ix_linked_accounts_status", table_name="linked_accounts")
    op.drop_index("ix_linked_accounts_provider", table_name="linked_accounts")
    op.drop_index("ix_linked_accounts_user_id", table_name="linked_accounts")
    op.drop_table("linked_accounts")
    sa.Enum(name="linked_account_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="linked_account_provider").drop(op.get_bind(), checkfirst=True)
