"""
Shared fixtures: an in-memory database per test, fake JSON-RPC nodes and a
fake price feed so no test touches the network.
"""

import logging
import uuid
from typing import Any, Dict, Optional

import base58
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from services.bep20_verifier import TRANSFER_EVENT_TOPIC, USDT_BSC_CONTRACT
from services.database import create_db_and_tables
from services.payment_plans import ensure_default_plans
from services.price_feed import AssetFeed, PriceFeedCache
from services.solana_verifier import SYSTEM_PROGRAM_ID
from services.user_accounts import get_or_create_user

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

BEP20_WALLET = "0x8ba1f109551bd432803012645ac136ddd64dba72"
BEP20_SENDER = "0x1cbd3b2770909d4e10f157cabc84c7264073c9ec"
SOL_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
SOL_SENDER = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"

BEP20_TX_HASH = "0x" + "ab" * 32
OTHER_BEP20_TX_HASH = "0x" + "cd" * 32
SOL_SIGNATURE = "5" + "K" * 86
OTHER_SOL_SIGNATURE = "3" + "M" * 86

USDT_DECIMALS_HEX = "0x12"


class FakeRpcClient:
    """
    Stand-in for JsonRpcClient. Responses are keyed by method; a value may be a
    plain result, an exception to raise, or a callable taking the params.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = dict(responses or {})
        self.calls = []

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        self.calls.append((method, params))
        response = self.responses.get(method)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params)
        return response

    def methods(self):
        return [method for method, _ in self.calls]


class FakePriceFetcher:
    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = dict(prices or {"tether": 1.0, "solana": 20.0})
        self.error: Optional[Exception] = None
        self.calls = 0

    async def __call__(self, url: str, timeout_seconds: float) -> Any:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {asset: {"usd": price} for asset, price in self.prices.items()}


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def bep20_receipt(
    recipient: str = BEP20_WALLET,
    amount_units: int = 10 * 10**18,
    block_number: int = 100,
    status: str = "0x1",
    contract: str = USDT_BSC_CONTRACT,
) -> dict:
    return {
        "status": status,
        "blockNumber": hex(block_number),
        "logs": [
            {
                "address": contract,
                "topics": [
                    TRANSFER_EVENT_TOPIC,
                    "0x" + "0" * 24 + BEP20_SENDER[2:],
                    "0x" + "0" * 24 + recipient[2:].lower(),
                ],
                "data": hex(amount_units),
            }
        ],
    }


def bep20_node(receipt: Optional[dict] = None, current_block: int = 110, **overrides) -> FakeRpcClient:
    responses = {
        "eth_getTransactionReceipt": bep20_receipt() if receipt is None else receipt,
        "eth_blockNumber": hex(current_block),
        "eth_call": USDT_DECIMALS_HEX,
        "eth_getTransactionByHash": {"input": "0xa9059cbb"},
    }
    responses.update(overrides)
    return FakeRpcClient(responses)


def system_transfer_data(lamports: int) -> str:
    return base58.b58encode((2).to_bytes(4, "little") + lamports.to_bytes(8, "little")).decode()


def solana_transaction(
    lamports: int = 500_000_000,
    recipient: str = SOL_WALLET,
    slot: int = 1000,
    err: Any = None,
    with_balances: bool = True,
) -> dict:
    sender_before = 5_000_000_000
    meta = {"err": err}
    if with_balances:
        meta["preBalances"] = [sender_before, 0, 1]
        meta["postBalances"] = [sender_before - lamports - 5000, lamports, 1]
    return {
        "slot": slot,
        "meta": meta,
        "transaction": {
            "message": {
                "accountKeys": [SOL_SENDER, recipient, SYSTEM_PROGRAM_ID],
                "instructions": [
                    {"programIdIndex": 2, "accounts": [0, 1], "data": system_transfer_data(lamports)}
                ],
            }
        },
    }


def solana_node(transaction: Optional[dict] = None, current_slot: int = 1040, **overrides) -> FakeRpcClient:
    responses = {
        "getSignatureStatuses": {"value": [{"confirmationStatus": "finalized"}]},
        "getTransaction": solana_transaction() if transaction is None else transaction,
        "getSlot": current_slot,
    }
    responses.update(overrides)
    return FakeRpcClient(responses)


@pytest.fixture
def price_fetcher():
    return FakePriceFetcher()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def price_feed(price_fetcher, clock):
    return PriceFeedCache(
        {
            "USDT": AssetFeed(asset_key="tether", url="https://prices.test/usdt", stable=True),
            "SOL": AssetFeed(asset_key="solana", url="https://prices.test/sol"),
        },
        fetcher=price_fetcher,
        clock=clock,
    )


@pytest.fixture(autouse=True)
def wallet_env(monkeypatch):
    monkeypatch.setenv("BEP20_WALLET_ADDRESS", BEP20_WALLET)
    monkeypatch.setenv("SOL_WALLET_ADDRESS", SOL_WALLET)
    monkeypatch.setenv("CRYPTO_PAYMENT_EXPIRY_MINUTES", "30")
    monkeypatch.delenv("DEFAULT_AVAILABLE_CREDITS", raising=False)
    monkeypatch.delenv("CRYPTO_VERIFICATION_TIMEOUT_SECONDS", raising=False)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def sql_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def plans(session_maker):
    async with session_maker() as session:
        created = await ensure_default_plans(session)
    return {plan.name: plan for plan in created}


@pytest.fixture
def starter_plan(plans):
    return plans["Starter Pack"]


@pytest_asyncio.fixture
async def user_id(session_maker):
    new_user_id = str(uuid.uuid4())
    async with session_maker() as session:
        await get_or_create_user(session, new_user_id)
    return new_user_id


@pytest_asyncio.fixture
async def other_user_id(session_maker):
    new_user_id = str(uuid.uuid4())
    async with session_maker() as session:
        await get_or_create_user(session, new_user_id)
    return new_user_id


async def count_rows(sql_session: AsyncSession, model) -> int:
    result = await sql_session.execute(select(func.count()).select_from(model))
    return int(result.scalar() or 0)
