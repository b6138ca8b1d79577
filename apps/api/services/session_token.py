"""Signed bearer tokens identifying the account (and admin role) behind a request."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from config import settings


SESSION_TOKEN_TYPE = "ledger_session"
SESSION_TOKEN_ISSUER = "credit-ledger-api"


class InvalidSessionToken(ValueError):
    pass


class SessionClaims(BaseModel):
    account_id: str
    email: Optional[str] = None
    admin: bool = False
    expires_at: int


def issue_session_token(
    account_id: str,
    *,
    email: Optional[str] = None,
    admin: bool = False,
    ttl_hours: Optional[int] = None,
) -> Dict[str, Any]:
    account_id = (account_id or "").strip()
    if not account_id:
        raise InvalidSessionToken("Cannot issue a session token without an account id.")

    now = datetime.now(timezone.utc)
    hours = max(int(ttl_hours or settings.JWT_EXPIRATION_HOURS or 24), 1)
    expires_at = int((now + timedelta(hours=hours)).timestamp())
    claims: Dict[str, Any] = {
        "sub": account_id,
        "iss": SESSION_TOKEN_ISSUER,
        "typ": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": expires_at,
        "admin": bool(admin),
    }
    if email:
        claims["email"] = email

    return {
        "token": jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM),
        "expires_at": expires_at,
    }


def read_session_token(token: str) -> SessionClaims:
    """Verify signature, expiry, issuer and type; return the typed claims."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=SESSION_TOKEN_ISSUER,
        )
    except JWTError as exc:
        raise InvalidSessionToken("Invalid or expired session token.") from exc

    if payload.get("typ") != SESSION_TOKEN_TYPE:
        raise InvalidSessionToken("Invalid session token type.")

    try:
        claims = SessionClaims(
            account_id=str(payload.get("sub") or "").strip(),
            email=payload.get("email") or None,
            # Only a literal true grants the role.
            admin=payload.get("admin") is True,
            expires_at=payload["exp"],
        )
    except (KeyError, ValidationError) as exc:
        raise InvalidSessionToken("Malformed session token claims.") from exc
    if not claims.account_id:
        raise InvalidSessionToken("Session token missing subject.")
    return claims
