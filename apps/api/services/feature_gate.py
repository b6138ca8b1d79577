"""Feature gate coupling priced feature runs to the credit ledger.

Ordering contract: check balance, run the work, charge only after the work
succeeded. Failed work is never charged. If the charge fails after the work
already ran (a concurrent request drained the balance, or the store went
away), the run is persisted as a reconciliation event and ``ConsumeFailed``
is raised instead of reporting success.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import feature_costs
from models.credit_reconciliation import CreditReconciliation
from services.ledger import consume_credits, get_credit_balance, unit_of_work
from services.ledger_errors import (
    AccountNotFound,
    ConsumeFailed,
    ExecutionFailed,
    InsufficientCredits,
    InvalidAmount,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)


@dataclass
class GatedResult:
    result: Any
    feature: str
    invocation_id: str
    charged: int
    balance_after: int

    def credits_payload(self) -> Dict[str, Any]:
        return {
            "charged": self.charged,
            "balance_after": self.balance_after,
            "invocation_id": self.invocation_id,
        }


def resolve_feature_cost(feature: str, cost: Optional[int] = None) -> int:
    """Explicit cost wins; otherwise the configured per-feature cost."""
    if cost is None:
        costs = feature_costs()
        if feature not in costs:
            raise InvalidAmount(f"No credit cost configured for feature {feature!r}.")
        return costs[feature]
    if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
        raise InvalidAmount(f"Feature cost must be a non-negative integer, got {cost!r}.")
    return cost


async def run_gated_feature(
    account_id: str,
    db: AsyncSession,
    *,
    feature: str,
    work: Callable[[], Awaitable[Any]],
    cost: Optional[int] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> GatedResult:
    required = resolve_feature_cost(feature, cost)
    invocation_id = str(uuid.uuid4())

    available = await get_credit_balance(account_id, db)
    if available < required:
        logger.info(
            "Rejected %s for %s before execution: required=%s available=%s",
            feature,
            account_id,
            required,
            available,
        )
        raise InsufficientCredits(account_id, required=required, available=available)

    try:
        result = await work()
    except Exception as exc:
        logger.warning("Feature %s failed for %s; no credits charged: %s", feature, account_id, exc)
        raise ExecutionFailed(account_id, feature=feature, detail=str(exc) or type(exc).__name__) from exc

    if required == 0:
        return GatedResult(
            result=result,
            feature=feature,
            invocation_id=invocation_id,
            charged=0,
            balance_after=available,
        )

    charge_metadata: Dict[str, Any] = dict(metadata or {})
    charge_metadata.update({"feature": feature, "invocation_id": invocation_id, "source": "feature_gate"})
    try:
        balance_after = await consume_credits(
            account_id,
            db,
            amount=required,
            reason=f"feature:{feature}",
            metadata=charge_metadata,
        )
    except (InsufficientCredits, StoreUnavailable, AccountNotFound) as exc:
        await _record_reconciliation(
            db,
            account_id=account_id,
            feature=feature,
            invocation_id=invocation_id,
            amount=required,
            error_code=exc.code,
            detail=exc.message,
        )
        raise ConsumeFailed(
            account_id,
            feature=feature,
            invocation_id=invocation_id,
            cause_code=exc.code,
            result=result,
        ) from exc

    return GatedResult(
        result=result,
        feature=feature,
        invocation_id=invocation_id,
        charged=required,
        balance_after=balance_after,
    )


async def _record_reconciliation(
    db: AsyncSession,
    *,
    account_id: str,
    feature: str,
    invocation_id: str,
    amount: int,
    error_code: str,
    detail: str,
) -> None:
    logger.warning(
        "Credit reconciliation needed: feature=%s account=%s invocation=%s amount=%s cause=%s",
        feature,
        account_id,
        invocation_id,
        amount,
        error_code,
    )
    try:
        db.add(
            CreditReconciliation(
                id=str(uuid.uuid4()),
                account_id=account_id,
                feature=feature,
                invocation_id=invocation_id,
                amount=amount,
                error_code=error_code,
                detail=detail,
                status="open",
            )
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        # The warning above is the only trace left; ConsumeFailed still propagates.
        logger.exception("Could not persist reconciliation for invocation %s", invocation_id)


async def list_reconciliations(
    db: AsyncSession,
    *,
    status: Optional[str] = "open",
    limit: int = 100,
) -> List[Dict[str, Any]]:
    query = select(CreditReconciliation).order_by(CreditReconciliation.created_at.desc())
    if status:
        query = query.where(CreditReconciliation.status == status)
    async with unit_of_work(db, "list_reconciliations", None):
        result = await db.execute(query.limit(max(1, min(int(limit), 500))))
        rows = [
            {
                "id": row.id,
                "account_id": row.account_id,
                "feature": row.feature,
                "invocation_id": row.invocation_id,
                "amount": row.amount,
                "error_code": row.error_code,
                "detail": row.detail,
                "status": row.status,
                "created_at": row.created_at.isoformat() if row.created_at else None,
                "resolved_at": row.resolved_at.isoformat() if row.resolved_at else None,
            }
            for row in result.scalars().all()
        ]
    return rows


async def resolve_reconciliation(reconciliation_id: str, db: AsyncSession) -> bool:
    """Mark an open reconciliation resolved. Returns False when it does not exist."""
    async with unit_of_work(db, "resolve_reconciliation", None):
        result = await db.execute(
            select(CreditReconciliation).where(CreditReconciliation.id == reconciliation_id)
        )
        row = result.scalar_one_or_none()
        if row is not None and row.status != "resolved":
            row.status = "resolved"
            row.resolved_at = datetime.now(timezone.utc)
    return row is not None
