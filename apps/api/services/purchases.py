"""Credit pack purchases.

Payment capture is simulated; once it "succeeds" the ledger receives a
``grant`` with reason ``purchase:<pack_id>``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_purchase import CreditPurchase
from services.ledger import grant_credits, unit_of_work
from services.ledger_errors import LedgerError, StoreUnavailable, UnknownCreditPack

logger = logging.getLogger(__name__)


class CreditPack(BaseModel):
    id: str
    name: str
    credits: int = Field(gt=0)
    price_euros: Decimal
    popular: bool = False
    features: List[str] = Field(default_factory=list)


def list_credit_packs() -> List[CreditPack]:
    return [CreditPack.model_validate(pack) for pack in settings.CREDIT_PACKS]


def get_credit_pack(pack_id: str) -> CreditPack:
    for pack in list_credit_packs():
        if pack.id == pack_id:
            return pack
    raise UnknownCreditPack(pack_id)


async def _simulate_payment(pack: CreditPack) -> str:
    delay = max(float(settings.SIMULATED_PAYMENT_DELAY_SECONDS), 0.0)
    if delay:
        await asyncio.sleep(delay)
    return f"sim_{uuid.uuid4().hex[:24]}"


async def _save_purchase(db: AsyncSession, purchase: CreditPurchase, *, account_id: str, operation: str) -> None:
    try:
        db.add(purchase)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreUnavailable(operation, account_id=account_id) from exc


async def purchase_credit_pack(
    account_id: str,
    pack_id: str,
    db: AsyncSession,
    *,
    payment_reference: Optional[str] = None,
) -> Dict[str, Any]:
    pack = get_credit_pack(pack_id)
    # Ledger rollbacks expire ORM state, so keep plain copies of what we report.
    purchase_id = str(uuid.uuid4())
    purchase = CreditPurchase(
        id=purchase_id,
        account_id=account_id,
        pack_id=pack.id,
        credits=pack.credits,
        amount_euros=pack.price_euros,
        status="pending",
    )
    await _save_purchase(db, purchase, account_id=account_id, operation="purchase_create")

    reference = payment_reference or await _simulate_payment(pack)
    try:
        balance_after = await grant_credits(
            account_id,
            db,
            amount=pack.credits,
            reason=f"purchase:{pack.id}",
            metadata={"pack_id": pack.id, "purchase_id": purchase_id, "source": "purchase"},
        )
    except LedgerError:
        purchase.status = "failed"
        purchase.payment_reference = reference
        try:
            await _save_purchase(db, purchase, account_id=account_id, operation="purchase_fail")
        except StoreUnavailable:
            logger.exception("Could not mark purchase %s as failed", purchase_id)
        raise

    purchase.status = "completed"
    purchase.payment_reference = reference
    purchase.completed_at = datetime.now(timezone.utc)
    await _save_purchase(db, purchase, account_id=account_id, operation="purchase_complete")
    logger.info("Purchase %s completed: %s credits for %s", purchase_id, pack.credits, account_id)

    return {
        "purchase_id": purchase_id,
        "pack_id": pack.id,
        "credits_added": pack.credits,
        "amount_euros": str(pack.price_euros),
        "status": "completed",
        "payment_reference": reference,
        "balance_after": balance_after,
    }


async def list_purchases(account_id: str, db: AsyncSession, limit: int = 20) -> List[Dict[str, Any]]:
    async with unit_of_work(db, "list_purchases", account_id):
        result = await db.execute(
            select(CreditPurchase)
            .where(CreditPurchase.account_id == account_id)
            .order_by(CreditPurchase.created_at.desc())
            .limit(max(1, min(int(limit), 100)))
        )
        purchases = [
            {
                "purchase_id": row.id,
                "pack_id": row.pack_id,
                "credits": row.credits,
                "amount_euros": str(row.amount_euros),
                "status": row.status,
                "created_at": row.created_at.isoformat() if row.created_at else None,
                "completed_at": row.completed_at.isoformat() if row.completed_at else None,
            }
            for row in result.scalars().all()
        ]
    return purchases
