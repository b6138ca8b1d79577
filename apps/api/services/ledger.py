"""Credit ledger: the only write path for balances and their audit trail.

Every mutating helper runs as one store transaction. The balance row is
changed with a single conditional UPDATE (or claimed with one before it is
read), and the matching ``CreditTransaction`` is inserted in the same
transaction, so a record never exists without its balance change and two
concurrent debits can never both pass the ``balance >= amount`` check.

Auto-initialization policy: when ``CREDITS_AUTO_INITIALIZE`` is on, every
entry point that touches an unseen account (balance query, consume, grant,
admin set, admin grant) first initializes it with
``DEFAULT_INITIAL_CREDITS``. When it is off, all of them raise
``AccountNotFound``. History and conservation checks never initialize.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_account import CreditAccount
from models.credit_transaction import CreditTransaction
from services.ledger_errors import (
    AccountNotFound,
    InsufficientCredits,
    InvalidAmount,
    LedgerError,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

KIND_INITIALIZE = "INITIALIZE"
KIND_CONSUME = "CONSUME"
KIND_GRANT = "GRANT"
KIND_ADMIN_SET = "ADMIN_SET"
KIND_ADMIN_GRANT = "ADMIN_GRANT"


class TransactionMetadata(BaseModel):
    """Traceability payload stored with each transaction.

    Known keys are typed; anything else is kept as-is.
    """

    model_config = ConfigDict(extra="allow")

    feature: Optional[str] = None
    invocation_id: Optional[str] = None
    pack_id: Optional[str] = None
    purchase_id: Optional[str] = None
    actor_id: Optional[str] = None
    source: Optional[str] = None


MetadataInput = Union[TransactionMetadata, Mapping[str, Any], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _metadata_payload(metadata: MetadataInput) -> Optional[Dict[str, Any]]:
    if metadata is None:
        return None
    if not isinstance(metadata, TransactionMetadata):
        metadata = TransactionMetadata.model_validate(dict(metadata))
    payload = metadata.model_dump(mode="json", exclude_none=True)
    return payload or None


def _require_positive(amount: Any, account_id: str, operation: str) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{operation} amount must be an integer, got {amount!r}.", account_id=account_id)
    if amount <= 0:
        raise InvalidAmount(f"{operation} amount must be greater than 0, got {amount}.", account_id=account_id)
    return amount


def _require_non_negative(amount: Any, account_id: str, operation: str) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{operation} amount must be an integer, got {amount!r}.", account_id=account_id)
    if amount < 0:
        raise InvalidAmount(f"{operation} amount must not be negative, got {amount}.", account_id=account_id)
    return amount


@asynccontextmanager
async def unit_of_work(db: AsyncSession, operation: str, account_id: Optional[str]) -> AsyncIterator[None]:
    """Commit on success, roll back on any failure, map store errors."""
    try:
        yield
        await db.commit()
    except LedgerError:
        await db.rollback()
        raise
    except (SQLAlchemyError, OSError, TimeoutError) as exc:
        await db.rollback()
        logger.error("Credit store failure during %s for account %s: %s", operation, account_id, exc)
        raise StoreUnavailable(operation, account_id=account_id) from exc
    except BaseException:
        # Cancellation included: leave nothing half-applied.
        await db.rollback()
        raise


async def _read_balance(db: AsyncSession, account_id: str) -> Optional[int]:
    result = await db.execute(
        select(CreditAccount.balance).where(CreditAccount.account_id == account_id)
    )
    balance = result.scalar_one_or_none()
    return None if balance is None else int(balance)


async def _append_transaction(
    db: AsyncSession,
    *,
    account_id: str,
    kind: str,
    amount: int,
    balance_before: int,
    balance_after: int,
    reason: Optional[str],
    metadata: MetadataInput,
    created_at: datetime,
) -> CreditTransaction:
    entry = CreditTransaction(
        transaction_id=str(uuid.uuid4()),
        account_id=account_id,
        kind=kind,
        amount=int(amount),
        balance_before=int(balance_before),
        balance_after=int(balance_after),
        reason=reason,
        metadata_json=_metadata_payload(metadata),
        created_at=created_at,
    )
    db.add(entry)
    await db.flush()
    return entry


async def _ensure_account(account_id: str, db: AsyncSession) -> None:
    if settings.CREDITS_AUTO_INITIALIZE:
        await initialize_credits(account_id, db)
        return
    async with unit_of_work(db, "lookup", account_id):
        exists = await _read_balance(db, account_id)
    if exists is None:
        raise AccountNotFound(account_id)


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "transaction_id": entry.transaction_id,
        "account_id": entry.account_id,
        "kind": entry.kind,
        "amount": entry.amount,
        "balance_before": entry.balance_before,
        "balance_after": entry.balance_after,
        "reason": entry.reason,
        "metadata": entry.metadata_json or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


async def initialize_credits(
    account_id: str,
    db: AsyncSession,
    initial_credits: Optional[int] = None,
) -> int:
    """Create the balance row once; later calls return the stored balance.

    A concurrent double-initialize is settled by the primary key on
    ``credit_accounts.account_id``: the loser's insert fails and it reads
    the winner's balance.
    """
    if initial_credits is None:
        initial_credits = int(settings.DEFAULT_INITIAL_CREDITS)
    grant = _require_non_negative(initial_credits, account_id, "initialize")

    async with unit_of_work(db, "initialize", account_id):
        existing = await _read_balance(db, account_id)
    if existing is not None:
        return existing

    now = _utcnow()
    try:
        db.add(CreditAccount(account_id=account_id, balance=grant, created_at=now, updated_at=now))
        await db.flush()
        await _append_transaction(
            db,
            account_id=account_id,
            kind=KIND_INITIALIZE,
            amount=grant,
            balance_before=0,
            balance_after=grant,
            reason="Initial credit grant",
            metadata={"source": "initialize"},
            created_at=now,
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Credit account %s was initialized concurrently; using stored balance", account_id)
        async with unit_of_work(db, "initialize", account_id):
            existing = await _read_balance(db, account_id)
        if existing is None:
            raise StoreUnavailable("initialize", account_id=account_id)
        return existing
    except (SQLAlchemyError, OSError, TimeoutError) as exc:
        await db.rollback()
        logger.error("Credit store failure during initialize for account %s: %s", account_id, exc)
        raise StoreUnavailable("initialize", account_id=account_id) from exc
    except BaseException:
        await db.rollback()
        raise

    logger.info("Initialized credit account %s with %s credits", account_id, grant)
    return grant


async def get_credit_balance(account_id: str, db: AsyncSession) -> int:
    """Current balance; unseen accounts follow the auto-initialization policy."""
    if settings.CREDITS_AUTO_INITIALIZE:
        return await initialize_credits(account_id, db)
    async with unit_of_work(db, "balance", account_id):
        balance = await _read_balance(db, account_id)
    if balance is None:
        raise AccountNotFound(account_id)
    return balance


async def consume_credits(
    account_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: Optional[str] = None,
    metadata: MetadataInput = None,
) -> int:
    """Debit ``amount`` credits or raise ``InsufficientCredits`` with no change."""
    debit = _require_positive(amount, account_id, "consume")
    await _ensure_account(account_id, db)

    async with unit_of_work(db, "consume", account_id):
        now = _utcnow()
        result = await db.execute(
            update(CreditAccount)
            .where(
                CreditAccount.account_id == account_id,
                CreditAccount.balance >= debit,
            )
            .values(balance=CreditAccount.balance - debit, updated_at=now)
            .returning(CreditAccount.balance)
            .execution_options(synchronize_session=False)
        )
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            available = await _read_balance(db, account_id)
            if available is None:
                raise AccountNotFound(account_id)
            raise InsufficientCredits(account_id, required=debit, available=available)

        balance_after = int(balance_after)
        await _append_transaction(
            db,
            account_id=account_id,
            kind=KIND_CONSUME,
            amount=-debit,
            balance_before=balance_after + debit,
            balance_after=balance_after,
            reason=reason or "Credit consumption",
            metadata=metadata,
            created_at=now,
        )

    logger.debug("Consumed %s credits from %s (balance %s)", debit, account_id, balance_after)
    return balance_after


async def _apply_grant(
    account_id: str,
    db: AsyncSession,
    *,
    kind: str,
    amount: int,
    reason: Optional[str],
    metadata: MetadataInput,
) -> int:
    credit = _require_positive(amount, account_id, kind.lower())
    await _ensure_account(account_id, db)

    async with unit_of_work(db, kind.lower(), account_id):
        now = _utcnow()
        result = await db.execute(
            update(CreditAccount)
            .where(CreditAccount.account_id == account_id)
            .values(balance=CreditAccount.balance + credit, updated_at=now)
            .returning(CreditAccount.balance)
            .execution_options(synchronize_session=False)
        )
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            raise AccountNotFound(account_id)

        balance_after = int(balance_after)
        await _append_transaction(
            db,
            account_id=account_id,
            kind=kind,
            amount=credit,
            balance_before=balance_after - credit,
            balance_after=balance_after,
            reason=reason or "Credit grant",
            metadata=metadata,
            created_at=now,
        )

    logger.info("Granted %s credits to %s via %s (balance %s)", credit, account_id, kind, balance_after)
    return balance_after


async def grant_credits(
    account_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: Optional[str] = None,
    metadata: MetadataInput = None,
) -> int:
    """Increase the balance (purchases, bonuses)."""
    return await _apply_grant(account_id, db, kind=KIND_GRANT, amount=amount, reason=reason, metadata=metadata)


async def admin_grant_credits(
    account_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: Optional[str] = None,
    metadata: MetadataInput = None,
) -> int:
    """Same as ``grant_credits`` but recorded as ADMIN_GRANT."""
    return await _apply_grant(
        account_id,
        db,
        kind=KIND_ADMIN_GRANT,
        amount=amount,
        reason=reason or "Administrative grant",
        metadata=metadata,
    )


async def admin_set_credits(
    account_id: str,
    db: AsyncSession,
    *,
    new_balance: int,
    reason: Optional[str] = None,
    metadata: MetadataInput = None,
) -> int:
    """Set an absolute balance; the record carries ``new - before`` as its amount."""
    target = _require_non_negative(new_balance, account_id, "admin_set")
    await _ensure_account(account_id, db)

    async with unit_of_work(db, "admin_set", account_id):
        now = _utcnow()
        # Claim the row first so balance_before cannot move under us.
        claim = await db.execute(
            update(CreditAccount)
            .where(CreditAccount.account_id == account_id)
            .values(updated_at=now)
            .returning(CreditAccount.balance)
            .execution_options(synchronize_session=False)
        )
        balance_before = claim.scalar_one_or_none()
        if balance_before is None:
            raise AccountNotFound(account_id)
        balance_before = int(balance_before)

        await db.execute(
            update(CreditAccount)
            .where(CreditAccount.account_id == account_id)
            .values(balance=target, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await _append_transaction(
            db,
            account_id=account_id,
            kind=KIND_ADMIN_SET,
            amount=target - balance_before,
            balance_before=balance_before,
            balance_after=target,
            reason=reason or "Administrative balance correction",
            metadata=metadata,
            created_at=now,
        )

    logger.info("Admin set credits for %s: %s -> %s", account_id, balance_before, target)
    return target


async def get_credit_history(account_id: str, db: AsyncSession, limit: int = 50) -> List[Dict[str, Any]]:
    """Most recent transactions, newest first. Never initializes."""
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidAmount(f"history limit must be an integer, got {limit!r}.", account_id=account_id)
    if limit < 0:
        raise InvalidAmount(f"history limit must not be negative, got {limit}.", account_id=account_id)
    bounded = min(limit, max(int(settings.CREDIT_HISTORY_MAX_LIMIT), 1))

    async with unit_of_work(db, "history", account_id):
        if not settings.CREDITS_AUTO_INITIALIZE and await _read_balance(db, account_id) is None:
            raise AccountNotFound(account_id)
        if bounded == 0:
            return []
        result = await db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.account_id == account_id)
            .order_by(CreditTransaction.id.desc())
            .limit(bounded)
        )
        entries = result.scalars().all()
    return [serialize_transaction(entry) for entry in entries]


async def verify_conservation(account_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Replay the account's records from zero and compare with the stored balance."""
    async with unit_of_work(db, "verify", account_id):
        stored = await _read_balance(db, account_id)
        if stored is None:
            raise AccountNotFound(account_id)
        result = await db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.account_id == account_id)
            .order_by(CreditTransaction.id.asc())
        )
        entries = result.scalars().all()

    running = 0
    broken_links: List[str] = []
    for entry in entries:
        if entry.balance_before != running or entry.balance_after != entry.balance_before + entry.amount:
            broken_links.append(entry.transaction_id)
        running += int(entry.amount)

    consistent = running == stored and not broken_links
    if not consistent:
        logger.warning(
            "Credit conservation mismatch for %s: stored=%s replayed=%s broken=%s",
            account_id,
            stored,
            running,
            len(broken_links),
        )
    return {
        "account_id": account_id,
        "stored_balance": stored,
        "replayed_balance": running,
        "transaction_count": len(entries),
        "broken_links": broken_links,
        "consistent": consistent,
    }


async def list_accounts(db: AsyncSession, *, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
    bounded = max(1, min(int(limit), 1000))
    async with unit_of_work(db, "list_accounts", None):
        result = await db.execute(
            select(CreditAccount)
            .order_by(CreditAccount.created_at.desc(), CreditAccount.account_id.asc())
            .offset(max(int(offset), 0))
            .limit(bounded)
        )
        accounts = result.scalars().all()
    return [
        {
            "account_id": account.account_id,
            "balance": account.balance,
            "created_at": account.created_at.isoformat() if account.created_at else None,
            "updated_at": account.updated_at.isoformat() if account.updated_at else None,
        }
        for account in accounts
    ]
