"""Error taxonomy for the credit ledger, feature gate and admin override."""

from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for every ledger-level failure."""

    code = "LEDGER_ERROR"
    retryable = False

    def __init__(self, message: str, *, account_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.account_id = account_id

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error_code": self.code, "message": self.message}
        if self.account_id:
            payload["account_id"] = self.account_id
        return payload


class AccountNotFound(LedgerError):
    code = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        super().__init__(f"No credit account exists for {account_id}.", account_id=account_id)


class InsufficientCredits(LedgerError):
    """Normal business outcome: the caller should prompt a purchase."""

    code = "INSUFFICIENT_CREDITS"

    def __init__(self, account_id: str, *, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}. "
            "Top up credits to continue.",
            account_id=account_id,
        )
        self.required = required
        self.available = available

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({"required": self.required, "available": self.available})
        return payload


class InvalidAmount(LedgerError):
    code = "INVALID_AMOUNT"

    def __init__(self, message: str, *, account_id: Optional[str] = None):
        super().__init__(message, account_id=account_id)


class StoreUnavailable(LedgerError):
    """The store could not complete the unit of work; nothing was applied."""

    code = "STORE_UNAVAILABLE"
    retryable = True

    def __init__(self, operation: str, *, account_id: Optional[str] = None):
        super().__init__(
            f"Credit store unavailable during {operation}; the operation was not applied.",
            account_id=account_id,
        )
        self.operation = operation


class ExecutionFailed(LedgerError):
    """Gated work raised; no credits were charged."""

    code = "EXECUTION_FAILED"

    def __init__(self, account_id: str, *, feature: str, detail: str):
        super().__init__(
            f"{feature} failed and no credits were charged: {detail}",
            account_id=account_id,
        )
        self.feature = feature


class ConsumeFailed(LedgerError):
    """Gated work succeeded but the charge could not be recorded."""

    code = "CONSUME_FAILED"

    def __init__(
        self,
        account_id: str,
        *,
        feature: str,
        invocation_id: str,
        cause_code: str,
        result: Any = None,
    ):
        super().__init__(
            f"{feature} completed but its credits could not be charged ({cause_code}). "
            "The run was flagged for reconciliation.",
            account_id=account_id,
        )
        self.feature = feature
        self.invocation_id = invocation_id
        self.cause_code = cause_code
        self.result = result

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({"invocation_id": self.invocation_id, "cause_code": self.cause_code})
        return payload


class AdminRequired(LedgerError):
    code = "ADMIN_REQUIRED"

    def __init__(self, actor_id: Optional[str] = None):
        super().__init__("Administrative privileges are required for this operation.")
        self.actor_id = actor_id


class UnknownCreditPack(LedgerError):
    code = "UNKNOWN_CREDIT_PACK"

    def __init__(self, pack_id: str):
        super().__init__(f"Unknown credit pack: {pack_id}.")
        self.pack_id = pack_id
