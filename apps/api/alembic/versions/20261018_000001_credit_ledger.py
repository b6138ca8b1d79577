"""credit ledger: accounts, transactions, purchases and reconciliations

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "credit_accounts",
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
        sa.PrimaryKeyConstraint("account_id"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.CheckConstraint("balance_after = balance_before + amount", name="ck_credit_transactions_balance_link"),
        sa.CheckConstraint("balance_after >= 0", name="ck_credit_transactions_balance_after_non_negative"),
        sa.CheckConstraint(
            "kind IN ('INITIALIZE', 'CONSUME', 'GRANT', 'ADMIN_SET', 'ADMIN_GRANT')",
            name="ck_credit_transactions_kind",
        ),
        sa.ForeignKeyConstraint(["account_id"], ["credit_accounts.account_id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
    )
    op.create_index("ix_credit_transactions_account_id", "credit_transactions", ["account_id"], unique=False)
    op.create_index("ix_credit_transactions_created_at", "credit_transactions", ["created_at"], unique=False)
    op.create_index(
        "ix_credit_transactions_account_id_id",
        "credit_transactions",
        ["account_id", "id"],
        unique=False,
    )

    op.create_table(
        "credit_purchases",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("pack_id", sa.String(), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("amount_euros", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_purchases_account_id", "credit_purchases", ["account_id"], unique=False)
    op.create_index("ix_credit_purchases_status", "credit_purchases", ["status"], unique=False)

    op.create_table(
        "credit_reconciliations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("feature", sa.String(), nullable=False),
        sa.Column("invocation_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("error_code", sa.String(), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invocation_id"),
    )
    op.create_index("ix_credit_reconciliations_account_id", "credit_reconciliations", ["account_id"], unique=False)
    op.create_index("ix_credit_reconciliations_status", "credit_reconciliations", ["status"], unique=False)
    op.create_index("ix_credit_reconciliations_created_at", "credit_reconciliations", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_credit_reconciliations_created_at", table_name="credit_reconciliations")
    op.drop_index("ix_credit_reconciliations_status", table_name="credit_reconciliations")
    op.drop_index("ix_credit_reconciliations_account_id", table_name="credit_reconciliations")
    op.drop_table("credit_reconciliations")

    op.drop_index("ix_credit_purchases_status", table_name="credit_purchases")
    op.drop_index("ix_credit_purchases_account_id", table_name="credit_purchases")
    op.drop_table("credit_purchases")

    op.drop_index("ix_credit_transactions_account_id_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_created_at", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_account_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")

    op.drop_table("credit_accounts")
