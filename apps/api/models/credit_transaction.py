"""CreditTransaction model: append-only audit trail of balance changes."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.sql import func

from database import Base


TRANSACTION_KINDS = ("INITIALIZE", "CONSUME", "GRANT", "ADMIN_SET", "ADMIN_GRANT")


class CreditTransaction(Base):
    """Immutable credit ledger entry."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        CheckConstraint(
            "balance_after = balance_before + amount",
            name="ck_credit_transactions_balance_link",
        ),
        CheckConstraint("balance_after >= 0", name="ck_credit_transactions_balance_after_non_negative"),
        CheckConstraint(
            "kind IN ('INITIALIZE', 'CONSUME', 'GRANT', 'ADMIN_SET', 'ADMIN_GRANT')",
            name="ck_credit_transactions_kind",
        ),
        Index("ix_credit_transactions_account_id_id", "account_id", "id"),
    )

    # Autoincrement id gives the creation order; created_at can collide.
    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String, nullable=False, unique=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, ForeignKey("credit_accounts.account_id"), nullable=False, index=True)
    kind = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    metadata_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
