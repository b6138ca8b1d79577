"""CreditReconciliation model for feature runs whose charge did not land."""

import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from database import Base


class CreditReconciliation(Base):
    """Work that completed without a matching CONSUME record."""

    __tablename__ = "credit_reconciliations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, nullable=False, index=True)
    feature = Column(String, nullable=False)
    invocation_id = Column(String, nullable=False, unique=True)
    amount = Column(Integer, nullable=False)
    error_code = Column(String, nullable=False)
    detail = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="open", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
