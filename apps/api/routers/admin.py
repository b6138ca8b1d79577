"""Admin credit override router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.ledger_http import ledger_http_exception
from routers.rate_limit import rate_limit
from services.admin_override import (
    admin_grant_balance,
    admin_set_balance,
    list_credit_accounts,
    verify_account,
)
from services.feature_gate import list_reconciliations, resolve_reconciliation
from services.ledger_errors import AdminRequired, LedgerError

router = APIRouter()
logger = logging.getLogger(__name__)


class AdminSetRequest(BaseModel):
    new_balance: int = Field(ge=0, le=10_000_000)
    reason: str = Field(default="Administrative balance correction", min_length=1, max_length=500)


class AdminGrantRequest(BaseModel):
    amount: int = Field(ge=1, le=1_000_000)
    reason: str = Field(default="Administrative grant", min_length=1, max_length=500)


def _require_admin_context(auth: AuthContext) -> None:
    if not auth.is_admin:
        raise ledger_http_exception(AdminRequired(auth.account_id))


@router.get("/credits/accounts")
async def admin_list_accounts(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        accounts = await list_credit_accounts(
            db,
            actor_id=auth.account_id,
            actor_is_admin=auth.is_admin,
            limit=limit,
            offset=offset,
        )
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return {"accounts": accounts}


@router.post("/credits/{account_id}/set")
async def admin_set(
    account_id: str,
    request: AdminSetRequest,
    _rate_limit: None = Depends(rate_limit("admin_credits", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        balance = await admin_set_balance(
            account_id,
            db,
            new_balance=request.new_balance,
            reason=request.reason,
            actor_id=auth.account_id,
            actor_is_admin=auth.is_admin,
        )
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return {"ok": True, "account_id": account_id, "balance": balance}


@router.post("/credits/{account_id}/grant")
async def admin_grant(
    account_id: str,
    request: AdminGrantRequest,
    _rate_limit: None = Depends(rate_limit("admin_credits", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        balance = await admin_grant_balance(
            account_id,
            db,
            amount=request.amount,
            reason=request.reason,
            actor_id=auth.account_id,
            actor_is_admin=auth.is_admin,
        )
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return {"ok": True, "account_id": account_id, "credits_added": request.amount, "balance": balance}


@router.get("/credits/{account_id}/verify")
async def admin_verify(
    account_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await verify_account(
            account_id,
            db,
            actor_id=auth.account_id,
            actor_is_admin=auth.is_admin,
        )
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc


@router.get("/reconciliations")
async def admin_reconciliations(
    status: Optional[str] = Query(default="open"),
    limit: int = Query(default=100, ge=1, le=500),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    _require_admin_context(auth)
    try:
        reconciliations = await list_reconciliations(db, status=status, limit=limit)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return {"reconciliations": reconciliations}


@router.post("/reconciliations/{reconciliation_id}/resolve")
async def admin_resolve_reconciliation(
    reconciliation_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    _require_admin_context(auth)
    try:
        found = await resolve_reconciliation(reconciliation_id, db)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    if not found:
        raise HTTPException(status_code=404, detail="Reconciliation not found")
    logger.info("Admin %s resolved reconciliation %s", auth.account_id, reconciliation_id)
    return {"ok": True, "id": reconciliation_id, "status": "resolved"}
