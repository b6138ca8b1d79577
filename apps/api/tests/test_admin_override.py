import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from unittest.mock import AsyncMock, patch

from main import app
from database import get_db
from services.admin_override import admin_grant_balance, admin_set_balance, list_credit_accounts, verify_account
from services.ledger import get_credit_history, initialize_credits
from services.ledger_errors import AdminRequired, StoreUnavailable
from services.session_token import issue_session_token


ADMIN_ID = "ops-admin"
ACCOUNT_ID = "customer-1"


@pytest.mark.asyncio
async def test_admin_set_requires_admin_assertion(session_maker):
    async with session_maker() as session:
        await initialize_credits(ACCOUNT_ID, session, 120)
        with pytest.raises(AdminRequired):
            await admin_set_balance(
                ACCOUNT_ID,
                session,
                new_balance=1000,
                reason="nope",
                actor_id="customer-2",
                actor_is_admin=False,
            )
        with pytest.raises(AdminRequired):
            await list_credit_accounts(session, actor_id="customer-2", actor_is_admin=False)
        history = await get_credit_history(ACCOUNT_ID, session)
    assert [entry["kind"] for entry in history] == ["INITIALIZE"]


@pytest.mark.asyncio
async def test_admin_set_records_actor(session_maker):
    async with session_maker() as session:
        await initialize_credits(ACCOUNT_ID, session, 120)
        balance = await admin_set_balance(
            ACCOUNT_ID,
            session,
            new_balance=1000,
            reason="Refund for outage",
            actor_id=ADMIN_ID,
            actor_is_admin=True,
        )
        latest = (await get_credit_history(ACCOUNT_ID, session, limit=1))[0]
        report = await verify_account(ACCOUNT_ID, session, actor_id=ADMIN_ID, actor_is_admin=True)

    assert balance == 1000
    assert latest["kind"] == "ADMIN_SET"
    assert latest["amount"] == 880
    assert latest["reason"] == "Refund for outage"
    assert latest["metadata"] == {"actor_id": ADMIN_ID, "source": "admin"}
    assert report["consistent"] is True


@pytest.mark.asyncio
async def test_admin_grant_adds_to_balance(session_maker):
    async with session_maker() as session:
        balance = await admin_grant_balance(
            ACCOUNT_ID,
            session,
            amount=25,
            reason="Goodwill",
            actor_id=ADMIN_ID,
            actor_is_admin=True,
        )
        accounts = await list_credit_accounts(session, actor_id=ADMIN_ID, actor_is_admin=True)
    assert balance == 75
    assert accounts[0]["account_id"] == ACCOUNT_ID


@pytest_asyncio.fixture
async def admin_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


def _headers(account_id, is_admin=False):
    token = issue_session_token(account_id, admin=is_admin)["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_admin_routes_reject_non_admin_tokens(admin_client):
    headers = _headers(ACCOUNT_ID)
    responses = [
        await admin_client.post(f"/admin/credits/{ACCOUNT_ID}/set", json={"new_balance": 9999}, headers=headers),
        await admin_client.post(f"/admin/credits/{ACCOUNT_ID}/grant", json={"amount": 10}, headers=headers),
        await admin_client.get("/admin/credits/accounts", headers=headers),
        await admin_client.get(f"/admin/credits/{ACCOUNT_ID}/verify", headers=headers),
        await admin_client.get("/admin/reconciliations", headers=headers),
    ]
    assert [response.status_code for response in responses] == [403] * 5
    assert responses[0].json()["detail"]["error_code"] == "ADMIN_REQUIRED"


@pytest.mark.asyncio
async def test_admin_routes_manage_balances(admin_client):
    headers = _headers(ADMIN_ID, is_admin=True)

    set_response = await admin_client.post(
        f"/admin/credits/{ACCOUNT_ID}/set",
        json={"new_balance": 300, "reason": "Migration"},
        headers=headers,
    )
    assert set_response.status_code == 200
    assert set_response.json() == {"ok": True, "account_id": ACCOUNT_ID, "balance": 300}

    grant_response = await admin_client.post(
        f"/admin/credits/{ACCOUNT_ID}/grant",
        json={"amount": 20},
        headers=headers,
    )
    assert grant_response.json()["balance"] == 320
    assert grant_response.json()["credits_added"] == 20

    verify_response = await admin_client.get(f"/admin/credits/{ACCOUNT_ID}/verify", headers=headers)
    assert verify_response.json()["consistent"] is True
    assert verify_response.json()["transaction_count"] == 3

    accounts = await admin_client.get("/admin/credits/accounts", headers=headers)
    assert accounts.json()["accounts"][0]["balance"] == 320


@pytest.mark.asyncio
async def test_admin_set_rejects_negative_balance(admin_client):
    response = await admin_client.post(
        f"/admin/credits/{ACCOUNT_ID}/set",
        json={"new_balance": -5},
        headers=_headers(ADMIN_ID, is_admin=True),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_resolving_unknown_reconciliation_returns_404(admin_client):
    response = await admin_client.post(
        "/admin/reconciliations/does-not-exist/resolve",
        headers=_headers(ADMIN_ID, is_admin=True),
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reconciliation_listing_reports_store_outage_as_503(admin_client):
    outage = AsyncMock(side_effect=StoreUnavailable("list_reconciliations"))
    with patch("routers.admin.list_reconciliations", outage):
        response = await admin_client.get("/admin/reconciliations", headers=_headers(ADMIN_ID, is_admin=True))
    assert response.status_code == 503
    assert response.headers["retry-after"] == "5"
    assert response.json()["detail"]["error_code"] == "STORE_UNAVAILABLE"
