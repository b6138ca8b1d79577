import pytest
from jose import jwt

from config import settings
from services.session_token import InvalidSessionToken, issue_session_token, read_session_token


def test_issued_token_round_trips_claims():
    issued = issue_session_token("acct-9", email="a@example.com", admin=True)
    claims = read_session_token(issued["token"])
    assert claims.account_id == "acct-9"
    assert claims.email == "a@example.com"
    assert claims.admin is True
    assert claims.expires_at == issued["expires_at"]


def test_regular_tokens_are_not_admin():
    claims = read_session_token(issue_session_token("acct-9")["token"])
    assert claims.admin is False


def test_truthy_non_boolean_admin_claim_is_ignored():
    forged = jwt.encode(
        {"sub": "acct-9", "iss": "credit-ledger-api", "typ": "ledger_session", "exp": 4102444800, "admin": "yes"},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    assert read_session_token(forged).admin is False


@pytest.mark.parametrize(
    "token",
    [
        "not-a-jwt",
        jwt.encode({"sub": "acct-9", "iss": "credit-ledger-api", "typ": "ledger_session", "exp": 4102444800}, "wrong"),
        jwt.encode({"sub": "acct-9", "iss": "someone-else", "typ": "ledger_session", "exp": 4102444800}, settings.JWT_SECRET),
        jwt.encode({"sub": "acct-9", "iss": "credit-ledger-api", "typ": "refresh", "exp": 4102444800}, settings.JWT_SECRET),
    ],
)
def test_invalid_tokens_are_rejected(token):
    with pytest.raises(InvalidSessionToken):
        read_session_token(token)


def test_blank_account_cannot_get_a_token():
    with pytest.raises(InvalidSessionToken):
        issue_session_token("  ")
