"""Credits router: balance, history, packs and purchases."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import feature_costs, settings
from database import get_db
from routers.auth_scope import AuthContext, ensure_account_scope, get_auth_context
from routers.ledger_http import ledger_http_exception
from routers.rate_limit import rate_limit
from services.ledger import get_credit_balance, get_credit_history
from services.ledger_errors import LedgerError
from services.purchases import list_credit_packs, list_purchases, purchase_credit_pack

router = APIRouter()
logger = logging.getLogger(__name__)


class PurchaseRequest(BaseModel):
    account_id: Optional[str] = None
    pack_id: str = Field(min_length=1, max_length=64)
    payment_reference: Optional[str] = Field(default=None, max_length=128)


@router.get("")
async def credits_summary(
    account_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_account_id = ensure_account_scope(auth.account_id, account_id)
    try:
        balance = await get_credit_balance(scoped_account_id, db)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return {
        "account_id": scoped_account_id,
        "balance": balance,
        "default_initial_credits": max(int(settings.DEFAULT_INITIAL_CREDITS), 0),
        "costs": feature_costs(),
    }


@router.get("/history")
async def credits_history(
    account_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_account_id = ensure_account_scope(auth.account_id, account_id)
    try:
        entries = await get_credit_history(scoped_account_id, db, limit=limit)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return {"account_id": scoped_account_id, "transactions": entries}


@router.get("/packs")
async def credit_packs():
    return {"packs": [pack.model_dump(mode="json") for pack in list_credit_packs()]}


@router.post("/purchase")
async def purchase_pack(
    request: PurchaseRequest,
    _rate_limit: None = Depends(rate_limit("credits_purchase", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_account_id = ensure_account_scope(auth.account_id, request.account_id)
    try:
        return await purchase_credit_pack(
            scoped_account_id,
            request.pack_id,
            db,
            payment_reference=request.payment_reference,
        )
    except LedgerError as exc:
        logger.warning("Purchase of %s failed for %s: %s", request.pack_id, scoped_account_id, exc.code)
        raise ledger_http_exception(exc) from exc


@router.get("/purchases")
async def purchase_history(
    account_id: Optional[str] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_account_id = ensure_account_scope(auth.account_id, account_id)
    try:
        purchases = await list_purchases(scoped_account_id, db, limit=limit)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return {"account_id": scoped_account_id, "purchases": purchases}
