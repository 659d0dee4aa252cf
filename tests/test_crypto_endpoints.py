import uuid

import httpx
import pytest
import pytest_asyncio

from conftest import BEP20_TX_HASH, bep20_node, solana_node
from api.main import app
from models.crypto import CryptoNetwork
from models.sql.payment_plan import PaymentPlanModel
from services.bep20_verifier import Bep20Verifier
from services.chain_verification import get_chain_verifiers
from services.credit_settlement import CreditSettlementEngine, get_credit_settlement_engine
from services.database import get_async_session
from services.solana_verifier import SolanaVerifier


@pytest_asyncio.fixture
async def client(session_maker, price_feed):
    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_chain_verifiers] = lambda: {
        CryptoNetwork.BEP20: Bep20Verifier(bep20_node()),
        CryptoNetwork.SOL: SolanaVerifier(solana_node()),
    }
    app.dependency_overrides[get_credit_settlement_engine] = lambda: CreditSettlementEngine(
        price_feed, usd_per_credit=0.45
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client
    app.dependency_overrides.clear()


@pytest.fixture
def headers(user_id):
    return {"X-User-ID": user_id}


async def _create(client, headers, plan_id, network="BEP20"):
    response = await client.post(
        "/api/v1/payments/crypto/create",
        json={"plan_id": plan_id, "network": network},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()["data"]


async def test_create_verify_and_status(client, headers, starter_plan):
    created = await _create(client, headers, str(starter_plan.id))

    response = await client.post(
        "/api/v1/payments/crypto/verify",
        json={"payment_id": created["payment_id"], "txn_hash": BEP20_TX_HASH},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["quota_added"] == 22
    assert body["data"]["new_available_usage"] == 62

    response = await client.get(f"/api/v1/payments/crypto/status/{created['payment_id']}", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "confirmed"

    response = await client.get("/api/v1/payments/transactions", headers=headers)
    assert [item["quota_amount"] for item in response.json()["data"]] == [22]


async def test_invalid_network_is_a_bad_request(client, headers, starter_plan):
    response = await client.post(
        "/api/v1/payments/crypto/create",
        json={"plan_id": str(starter_plan.id), "network": "TRC20"},
        headers=headers,
    )

    assert response.status_code == 400
    assert response.json() == {"error": "invalid", "message": "Invalid network. Must be BEP20 or SOL"}


async def test_status_of_someone_elses_payment_is_forbidden(client, headers, starter_plan):
    created = await _create(client, headers, str(starter_plan.id), network="SOL")

    response = await client.get(
        f"/api/v1/payments/crypto/status/{created['payment_id']}",
        headers={"X-User-ID": str(uuid.uuid4())},
    )

    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


async def test_unknown_payment_is_not_found(client, headers):
    response = await client.post(
        "/api/v1/payments/crypto/verify",
        json={"payment_id": "crypto-missing", "txn_hash": BEP20_TX_HASH},
        headers=headers,
    )

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


async def test_pending_lists_open_requests(client, headers, starter_plan):
    created = await _create(client, headers, str(starter_plan.id), network="SOL")

    response = await client.get("/api/v1/payments/crypto/pending", headers=headers)

    assert response.status_code == 200
    assert [item["payment_id"] for item in response.json()["data"]] == [created["payment_id"]]


async def test_health_check(client):
    response = await client.get("/api/v1/system/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_plans_are_listed_in_display_order(client, headers, plans, session_maker):
    async with session_maker() as session:
        retired = await session.get(PaymentPlanModel, plans["Player Pack"].id)
        retired.is_active = False
        session.add(retired)
        await session.commit()

    response = await client.get("/api/v1/payments/plans")

    assert response.status_code == 200
    listed = response.json()["data"]
    assert [plan["name"] for plan in listed] == ["Starter Pack", "Pro Pack"]
    assert listed[0] == {
        "id": str(plans["Starter Pack"].id),
        "name": "Starter Pack",
        "description": "Perfect for casual players",
        "quota_amount": 20,
        "price": 10.0,
        "currency": "USD",
    }

    created = await _create(client, headers, listed[-1]["id"], network="SOL")
    assert created["plan_name"] == "Pro Pack"
    assert created["amount"] == 50.0
