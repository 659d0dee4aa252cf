from typing import Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from models.crypto import CryptoNetwork
from services.chain_verification import ChainVerifier, get_chain_verifiers
from services.credit_settlement import CreditSettlementEngine, get_credit_settlement_engine
from services.crypto_payment_service import (
    create_crypto_payment,
    get_crypto_payment_status,
    list_pending_crypto_payments,
    list_transactions,
    verify_crypto_transaction,
)
from services.database import get_async_session
from services.user_accounts import get_request_user_id


CRYPTO_ROUTER = APIRouter(prefix="/crypto", tags=["Crypto Payments"])
TRANSACTIONS_ROUTER = APIRouter(tags=["Transactions"])


class CreateCryptoPaymentRequest(BaseModel):
    plan_id: str
    network: str


class VerifyCryptoTransactionRequest(BaseModel):
    payment_id: str
    txn_hash: str


@CRYPTO_ROUTER.post("/create")
async def create_payment(
    payload: CreateCryptoPaymentRequest,
    request: Request,
    sql_session: AsyncSession = Depends(get_async_session),
):
    user_id = get_request_user_id(request)
    result = await create_crypto_payment(
        sql_session,
        user_id=user_id,
        plan_id=payload.plan_id,
        network=payload.network,
    )
    return {"success": True, "data": result}


@CRYPTO_ROUTER.post("/verify")
async def verify_transaction(
    payload: VerifyCryptoTransactionRequest,
    request: Request,
    sql_session: AsyncSession = Depends(get_async_session),
    verifiers: Dict[CryptoNetwork, ChainVerifier] = Depends(get_chain_verifiers),
    settlement: CreditSettlementEngine = Depends(get_credit_settlement_engine),
):
    user_id = get_request_user_id(request)
    result = await verify_crypto_transaction(
        sql_session,
        user_id=user_id,
        payment_id=payload.payment_id,
        txn_hash=payload.txn_hash,
        verifiers=verifiers,
        settlement=settlement,
    )
    return {"success": True, "data": result}


@CRYPTO_ROUTER.get("/status/{payment_id}")
async def payment_status(
    payment_id: str,
    request: Request,
    sql_session: AsyncSession = Depends(get_async_session),
):
    user_id = get_request_user_id(request)
    result = await get_crypto_payment_status(
        sql_session, user_id=user_id, payment_id=payment_id
    )
    return {"success": True, "data": result}


@CRYPTO_ROUTER.get("/pending")
async def pending_payments(
    request: Request,
    sql_session: AsyncSession = Depends(get_async_session),
):
    user_id = get_request_user_id(request)
    payments = await list_pending_crypto_payments(sql_session, user_id=user_id)
    return {"success": True, "data": payments}


@TRANSACTIONS_ROUTER.get("/transactions")
async def transaction_history(
    request: Request,
    limit: int = 50,
    sql_session: AsyncSession = Depends(get_async_session),
):
    user_id = get_request_user_id(request)
    transactions = await list_transactions(
        sql_session, user_id=user_id, limit=max(1, min(limit, 200))
    )
    return {"success": True, "data": transactions}
