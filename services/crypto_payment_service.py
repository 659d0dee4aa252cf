import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models.crypto import CryptoNetwork, CryptoPaymentStatus
from models.sql.crypto_payment import CryptoPaymentModel
from services.chain_verification import ChainVerifier, VerificationResult, parse_network
from services.credit_settlement import (
    CreditSettlementEngine,
    SettlementOutcome,
    find_ledger_for_payment,
    list_user_ledger,
    outcome_from_ledger,
)
from services.crypto_payment_ledger import (
    advance_status,
    as_utc,
    create_request,
    get_owned_payment,
    is_expired,
    list_pending_payments,
    mark_failed,
    record_retryable_error,
    submit_transaction,
)
from services.json_rpc_client import ChainConnectionError, JsonRpcResponseError
from services.payment_errors import (
    CryptoPaymentNotConfigured,
    InsufficientAmount,
    InvalidPaymentRequest,
    RateUnavailable,
    UpstreamUnavailable,
    VerificationFailed,
)
from services.payment_plans import list_active_plans
from services.user_accounts import get_or_create_user
from utils.get_env import env_float, get_crypto_verification_timeout_seconds_env

logger = logging.getLogger(__name__)

DEFAULT_VERIFICATION_TIMEOUT_SECONDS = 45


def get_verification_timeout_seconds() -> float:
    return env_float(
        get_crypto_verification_timeout_seconds_env(), DEFAULT_VERIFICATION_TIMEOUT_SECONDS
    )


def _iso_utc(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _verification_payload(outcome: SettlementOutcome) -> dict:
    payload = {
        "verified": True,
        "quota_added": outcome.quota_added,
        "new_available_usage": outcome.new_available_credits,
        "transaction_id": outcome.transaction_id,
        "amount": outcome.amount_usd,
        "confirmation_count": outcome.confirmation_count,
    }
    if outcome.already_processed:
        payload["already_processed"] = True
    return payload


async def create_crypto_payment(
    sql_session: AsyncSession,
    *,
    user_id: str,
    plan_id: str,
    network: str,
) -> dict:
    if not plan_id or not network:
        raise InvalidPaymentRequest("Missing required fields: plan_id, network")
    parsed_network = parse_network(network)
    await get_or_create_user(sql_session, user_id)

    payment, plan = await create_request(
        sql_session, user_id=user_id, plan_id=plan_id, network=parsed_network
    )
    return {
        "payment_id": payment.payment_id,
        "wallet_address": payment.wallet_address,
        "amount": float(payment.amount),
        "currency": "USD",
        "token": payment.token,
        "network": payment.network,
        "memo": payment.memo,
        "expires_at": _iso_utc(payment.expires_at),
        "plan_name": plan.name,
        "quota_amount": int(plan.quota_amount),
    }


async def _run_verifier(
    verifier: ChainVerifier, payment: CryptoPaymentModel
) -> VerificationResult:
    return await asyncio.wait_for(
        verifier.verify(payment.transaction_hash, payment.wallet_address, memo=payment.memo),
        timeout=get_verification_timeout_seconds(),
    )


async def verify_crypto_transaction(
    sql_session: AsyncSession,
    *,
    user_id: str,
    payment_id: str,
    txn_hash: str,
    verifiers: Dict[CryptoNetwork, ChainVerifier],
    settlement: CreditSettlementEngine,
) -> dict:
    """
    Verify a submitted transaction on chain and settle credits for it.

    Retrying with the same arguments after success returns the first
    settlement with `already_processed` set. Permanent verification failures and
    too-small amounts mark the payment `failed`. Recoverable problems leave it
    `processing` so the hash can be resubmitted.
    """
    if not payment_id or not txn_hash:
        raise InvalidPaymentRequest("Missing required fields: payment_id, txn_hash")
    await get_or_create_user(sql_session, user_id)

    submission = await submit_transaction(
        sql_session, payment_id=payment_id, user_id=user_id, txn_hash=txn_hash
    )
    payment = submission.payment
    if submission.already_processed:
        ledger = await find_ledger_for_payment(sql_session, payment.payment_id)
        if ledger is None:
            raise VerificationFailed("This payment has already been confirmed")
        return _verification_payload(await outcome_from_ledger(sql_session, ledger))

    network = CryptoNetwork(payment.network)
    verifier = verifiers.get(network)
    if verifier is None:
        logger.error(f"No chain verifier configured for {network.value}")
        raise CryptoPaymentNotConfigured()

    logger.info(f"Verifying {network.value} transaction {payment.transaction_hash} for {payment_id}")
    try:
        result = await _run_verifier(verifier, payment)
    except asyncio.TimeoutError:
        message = "Blockchain verification timed out. Please try again shortly."
        logger.warning(f"Verification of {payment.transaction_hash} timed out")
        await record_retryable_error(sql_session, payment, message)
        raise VerificationFailed(message, retryable=True)
    except (ChainConnectionError, JsonRpcResponseError) as exc:
        logger.exception(f"Chain RPC failure while verifying {payment.transaction_hash}: {exc}")
        await record_retryable_error(sql_session, payment, "Blockchain node unavailable")
        raise UpstreamUnavailable()

    if not result.verified:
        reason = result.error or "Transaction verification failed"
        logger.warning(f"{network.value} verification failed for {payment_id}: {reason}")
        if result.retryable:
            await record_retryable_error(sql_session, payment, reason)
        else:
            await mark_failed(sql_session, payment, reason)
        raise VerificationFailed(reason, retryable=result.retryable)

    try:
        outcome = await settlement.settle(sql_session, payment, result)
    except InsufficientAmount as exc:
        await mark_failed(sql_session, payment, exc.detail)
        raise
    except RateUnavailable as exc:
        await record_retryable_error(sql_session, payment, exc.detail)
        raise
    except VerificationFailed as exc:
        await mark_failed(sql_session, payment, exc.detail)
        raise
    return _verification_payload(outcome)


async def get_crypto_payment_status(
    sql_session: AsyncSession,
    *,
    user_id: str,
    payment_id: str,
) -> dict:
    payment = await get_owned_payment(sql_session, payment_id=payment_id, user_id=user_id)

    # Lazy sweep for this record.
    if payment.status == CryptoPaymentStatus.PENDING.value and is_expired(payment):
        advance_status(payment, CryptoPaymentStatus.EXPIRED)
        sql_session.add(payment)
        await sql_session.commit()

    return {
        "payment_id": payment.payment_id,
        "status": payment.status,
        "network": payment.network,
        "token": payment.token,
        "amount": float(payment.amount),
        "confirmed_at": _iso_utc(payment.confirmed_at),
        "transaction_hash": payment.transaction_hash,
        "error_message": payment.error_message,
        "expires_at": _iso_utc(payment.expires_at),
        "is_expired": is_expired(payment),
    }


async def list_pending_crypto_payments(sql_session: AsyncSession, *, user_id: str) -> list:
    payments = await list_pending_payments(sql_session, user_id)
    return [
        {
            "payment_id": payment.payment_id,
            "network": payment.network,
            "token": payment.token,
            "amount": float(payment.amount),
            "wallet_address": payment.wallet_address,
            "memo": payment.memo,
            "expires_at": _iso_utc(payment.expires_at),
        }
        for payment in payments
    ]


async def list_transactions(sql_session: AsyncSession, *, user_id: str, limit: int = 50) -> list:
    ledgers = await list_user_ledger(sql_session, user_id, limit=limit)
    return [
        {
            "transaction_id": str(ledger.id),
            "amount": ledger.amount / 100,
            "currency": ledger.currency,
            "quota_amount": int(ledger.quota_amount),
            "status": ledger.status,
            "payment_method": ledger.payment_method,
            "description": ledger.description,
            "crypto_transaction_hash": ledger.crypto_transaction_hash,
            "crypto_network": ledger.crypto_network,
            "crypto_token": ledger.crypto_token,
            "created_at": _iso_utc(ledger.created_at),
        }
        for ledger in ledgers
    ]


async def list_payment_plans(sql_session: AsyncSession) -> list:
    plans = await list_active_plans(sql_session)
    return [
        {
            "id": str(plan.id),
            "name": plan.name,
            "description": plan.description,
            "quota_amount": int(plan.quota_amount),
            "price": float(plan.price),
            "currency": plan.currency,
        }
        for plan in plans
    ]
