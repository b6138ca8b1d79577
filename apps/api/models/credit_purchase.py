"""CreditPurchase model recording credit pack purchases."""

import uuid

from sqlalchemy import Column, DateTime, Integer, Numeric, String
from sqlalchemy.sql import func

from database import Base


class CreditPurchase(Base):
    """Purchase of a credit pack; the ledger only sees the resulting grant."""

    __tablename__ = "credit_purchases"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, nullable=False, index=True)
    pack_id = Column(String, nullable=False)
    credits = Column(Integer, nullable=False)
    amount_euros = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    payment_reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
