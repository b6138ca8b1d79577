"""Translate ledger errors into HTTP responses."""

from fastapi import HTTPException

from services.ledger_errors import (
    AccountNotFound,
    AdminRequired,
    ConsumeFailed,
    ExecutionFailed,
    InsufficientCredits,
    InvalidAmount,
    LedgerError,
    StoreUnavailable,
    UnknownCreditPack,
)


_STATUS_BY_ERROR = (
    (InsufficientCredits, 402),
    (AdminRequired, 403),
    (AccountNotFound, 404),
    (ConsumeFailed, 409),
    (InvalidAmount, 422),
    (UnknownCreditPack, 422),
    (ExecutionFailed, 502),
    (StoreUnavailable, 503),
)


def ledger_http_exception(exc: LedgerError) -> HTTPException:
    """Map a ledger error onto a status code with a machine-readable detail.

    402 means "buy more credits"; 5xx means the system failed.
    """
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    headers = {"Retry-After": "5"} if isinstance(exc, StoreUnavailable) else None
    return HTTPException(status_code=status_code, detail=exc.to_dict(), headers=headers)
