import pytest

from config import feature_costs, settings, validate_security_settings
from database import _async_database_url
from routers.ledger_http import ledger_http_exception
from services.ledger_errors import InsufficientCredits, StoreUnavailable


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db:5432/ledger", "postgresql+asyncpg://u:p@db:5432/ledger"),
        ("postgres://u:p@db/ledger", "postgresql+asyncpg://u:p@db/ledger"),
        ("sqlite:///./ledger.db", "sqlite+aiosqlite:///./ledger.db"),
        ("sqlite+aiosqlite:///./ledger.db", "sqlite+aiosqlite:///./ledger.db"),
    ],
)
def test_database_url_uses_async_drivers(url, expected):
    assert _async_database_url(url) == expected


def test_feature_costs_follow_settings(monkeypatch):
    monkeypatch.setattr(settings, "CREDIT_COST_ANALYSIS", 7)
    assert feature_costs() == {
        "business_analysis": 7,
        "website_analysis": 7,
        "document_analysis": 7,
        "chat": 1,
    }


def test_default_jwt_secret_is_refused(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "change_me_in_production")
    with pytest.raises(ValueError):
        validate_security_settings()

    monkeypatch.setattr(settings, "JWT_SECRET", "a-long-enough-random-secret-value")
    validate_security_settings()


def test_ledger_errors_map_to_http_statuses():
    insufficient = ledger_http_exception(InsufficientCredits("acct", required=5, available=1))
    assert insufficient.status_code == 402
    assert insufficient.detail["required"] == 5

    unavailable = ledger_http_exception(StoreUnavailable("consume", account_id="acct"))
    assert unavailable.status_code == 503
    assert unavailable.headers == {"Retry-After": "5"}
