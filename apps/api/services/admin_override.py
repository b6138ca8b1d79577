"""Administrative balance corrections routed through the ledger."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from services.ledger import admin_grant_credits, admin_set_credits, list_accounts, verify_conservation
from services.ledger_errors import AdminRequired

logger = logging.getLogger(__name__)


def _require_admin(actor_id: Optional[str], actor_is_admin: bool) -> None:
    # Authorization itself happens upstream; only the assertion is checked here.
    if not actor_is_admin:
        logger.warning("Rejected admin credit operation from non-admin actor %s", actor_id)
        raise AdminRequired(actor_id)


async def admin_set_balance(
    account_id: str,
    db: AsyncSession,
    *,
    new_balance: int,
    reason: str,
    actor_id: Optional[str],
    actor_is_admin: bool,
) -> int:
    _require_admin(actor_id, actor_is_admin)
    balance = await admin_set_credits(
        account_id,
        db,
        new_balance=new_balance,
        reason=reason,
        metadata={"actor_id": actor_id, "source": "admin"},
    )
    logger.info("Admin %s set credits of %s to %s (%s)", actor_id, account_id, balance, reason)
    return balance


async def admin_grant_balance(
    account_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    actor_id: Optional[str],
    actor_is_admin: bool,
) -> int:
    _require_admin(actor_id, actor_is_admin)
    balance = await admin_grant_credits(
        account_id,
        db,
        amount=amount,
        reason=reason,
        metadata={"actor_id": actor_id, "source": "admin"},
    )
    logger.info("Admin %s granted %s credits to %s (%s)", actor_id, amount, account_id, reason)
    return balance


async def list_credit_accounts(
    db: AsyncSession,
    *,
    actor_id: Optional[str],
    actor_is_admin: bool,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    _require_admin(actor_id, actor_is_admin)
    return await list_accounts(db, limit=limit, offset=offset)


async def verify_account(
    account_id: str,
    db: AsyncSession,
    *,
    actor_id: Optional[str],
    actor_is_admin: bool,
) -> Dict[str, Any]:
    _require_admin(actor_id, actor_is_admin)
    return await verify_conservation(account_id, db)
