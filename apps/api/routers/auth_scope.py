"""Request authentication: who is calling, and may they touch this account."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import InvalidSessionToken, SessionClaims, read_session_token


auth_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    account_id: str
    email: Optional[str] = None
    is_admin: bool = False

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> "AuthContext":
        return cls(account_id=claims.account_id, email=claims.email, is_admin=claims.admin)


def ensure_account_scope(auth_account_id: str, supplied_account_id: Optional[str]) -> str:
    """Callers act on their own account only; admins use the /admin routes."""
    if supplied_account_id and supplied_account_id != auth_account_id:
        logger.warning("Account %s attempted to act on %s", auth_account_id, supplied_account_id)
        raise HTTPException(status_code=403, detail="account_id does not match authenticated session.")
    return auth_account_id


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> AuthContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Missing Bearer session token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = read_session_token(credentials.credentials)
    except InvalidSessionToken as exc:
        raise HTTPException(
            status_code=401,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    return AuthContext.from_claims(claims)
