import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from unittest.mock import AsyncMock, patch

from main import app
from database import get_db
from services.inference import InferenceError
from services.session_token import issue_session_token


ACCOUNT_ID = "api-user"


def _auth_headers(account_id=ACCOUNT_ID, is_admin=False):
    token = issue_session_token(account_id, admin=is_admin)["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def api_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.mark.asyncio
async def test_balance_requires_session_token(api_client):
    response = await api_client.get("/credits")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_balance_initializes_new_account(api_client):
    response = await api_client.get("/credits", headers=_auth_headers())
    assert response.status_code == 200
    body = response.json()
    assert body["account_id"] == ACCOUNT_ID
    assert body["balance"] == 50
    assert body["costs"]["business_analysis"] == 5
    assert body["costs"]["chat"] == 1


@pytest.mark.asyncio
async def test_cross_account_access_is_rejected(api_client):
    response = await api_client.get("/credits", params={"account_id": "someone-else"}, headers=_auth_headers())
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_priced_feature_charges_after_success(api_client):
    analysis = AsyncMock(return_value={"summary": "solid business"})
    with patch("routers.analysis.run_analysis", analysis):
        response = await api_client.post(
            "/analysis/business",
            json={"business_type": "saas", "revenue": 120000, "profit": 30000},
            headers=_auth_headers(),
        )

    assert response.status_code == 200
    body = response.json()
    assert body["feature"] == "business_analysis"
    assert body["result"] == {"summary": "solid business"}
    assert body["credits"]["charged"] == 5
    assert body["credits"]["balance_after"] == 45
    analysis.assert_awaited_once()
    assert analysis.await_args.args[0] == "business_analysis"

    history = await api_client.get("/credits/history", headers=_auth_headers())
    latest = history.json()["transactions"][0]
    assert latest["kind"] == "CONSUME"
    assert latest["metadata"]["invocation_id"] == body["credits"]["invocation_id"]


@pytest.mark.asyncio
async def test_mock_inference_is_used_without_api_key(api_client):
    response = await api_client.post("/analysis/chat", json={"message": "hello"}, headers=_auth_headers())
    assert response.status_code == 200
    body = response.json()
    assert body["result"]["mock"] is True
    assert body["credits"]["balance_after"] == 49


@pytest.mark.asyncio
async def test_insufficient_credits_returns_402_without_running_feature(api_client):
    headers = _auth_headers()
    admin_headers = _auth_headers("ops-admin", is_admin=True)
    drained = await api_client.post(
        f"/admin/credits/{ACCOUNT_ID}/set",
        json={"new_balance": 2, "reason": "test"},
        headers=admin_headers,
    )
    assert drained.status_code == 200

    analysis = AsyncMock(return_value={"summary": "never"})
    with patch("routers.analysis.run_analysis", analysis):
        response = await api_client.post(
            "/analysis/documents",
            json={"text": "Q3 figures"},
            headers=headers,
        )

    assert response.status_code == 402
    detail = response.json()["detail"]
    assert detail["error_code"] == "INSUFFICIENT_CREDITS"
    assert detail["required"] == 5
    assert detail["available"] == 2
    analysis.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_inference_returns_502_and_charges_nothing(api_client):
    with patch("routers.analysis.run_analysis", AsyncMock(side_effect=InferenceError("provider down"))):
        response = await api_client.post(
            "/analysis/website",
            json={"url": "https://example.com"},
            headers=_auth_headers(),
        )

    assert response.status_code == 502
    assert response.json()["detail"]["error_code"] == "EXECUTION_FAILED"

    balance = await api_client.get("/credits", headers=_auth_headers())
    assert balance.json()["balance"] == 50


@pytest.mark.asyncio
async def test_website_analysis_rejects_non_http_url(api_client):
    response = await api_client.post(
        "/analysis/website",
        json={"url": "ftp://example.com"},
        headers=_auth_headers(),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_packs_and_purchase_flow(api_client):
    packs = await api_client.get("/credits/packs")
    assert packs.status_code == 200
    by_id = {pack["id"]: pack for pack in packs.json()["packs"]}
    assert by_id["starter"]["credits"] == 100
    assert by_id["professional"]["credits"] == 500
    assert by_id["enterprise"]["credits"] == 2000

    response = await api_client.post(
        "/credits/purchase",
        json={"pack_id": "professional"},
        headers=_auth_headers(),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["credits_added"] == 500
    assert body["balance_after"] == 550
    assert body["payment_reference"].startswith("sim_")

    purchases = await api_client.get("/credits/purchases", headers=_auth_headers())
    assert purchases.json()["purchases"][0]["purchase_id"] == body["purchase_id"]
    assert purchases.json()["purchases"][0]["status"] == "completed"

    history = await api_client.get("/credits/history", headers=_auth_headers())
    latest = history.json()["transactions"][0]
    assert latest["kind"] == "GRANT"
    assert latest["reason"] == "purchase:professional"
    assert latest["metadata"]["purchase_id"] == body["purchase_id"]


@pytest.mark.asyncio
async def test_unknown_pack_returns_422(api_client):
    response = await api_client.post(
        "/credits/purchase",
        json={"pack_id": "platinum"},
        headers=_auth_headers(),
    )
    assert response.status_code == 422
    assert response.json()["detail"]["error_code"] == "UNKNOWN_CREDIT_PACK"


@pytest.mark.asyncio
async def test_history_limit_is_validated(api_client):
    response = await api_client.get("/credits/history", params={"limit": 0}, headers=_auth_headers())
    assert response.status_code == 422
