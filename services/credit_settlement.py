"""
Converts a verified on-chain transfer into credits, exactly once per transaction hash.

The ledger row, the balance increment and the payment confirmation are committed
together. The partial unique index on `ledger_transactions.crypto_transaction_hash`
settles races: the loser's commit fails and it reports the winner's settlement.
"""

import logging
import uuid
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import List, NamedTuple, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.crypto import CryptoPaymentStatus
from models.sql.crypto_payment import CryptoPaymentModel
from models.sql.ledger_transaction import LedgerTransactionModel
from services.chain_verification import VerificationResult
from services.crypto_payment_ledger import mark_confirmed
from services.payment_errors import (
    DuplicateTransactionHash,
    InsufficientAmount,
    PaymentNotFound,
    VerificationFailed,
)
from services.payment_plans import get_plan
from services.price_feed import PriceFeedCache, get_price_feed_cache
from services.user_accounts import (
    get_available_credits,
    get_user,
    increment_credits,
    increment_spend,
)
from utils.get_env import env_float, get_usd_per_credit_env

logger = logging.getLogger(__name__)

DEFAULT_USD_PER_CREDIT = 0.45


class CreditQuote(NamedTuple):
    rate: float
    usd_value: Decimal
    credits: int
    amount_cents: int


class SettlementOutcome(BaseModel):
    quota_added: int
    new_available_credits: int
    transaction_id: str
    amount_usd: float
    confirmation_count: int
    already_processed: bool = False


def quote_credits(amount: float, rate: float, usd_per_credit: float) -> CreditQuote:
    usd_value = Decimal(str(amount)) * Decimal(str(rate))
    credits = (usd_value / Decimal(str(usd_per_credit))).to_integral_value(rounding=ROUND_FLOOR)
    amount_cents = (usd_value * 100).to_integral_value(rounding=ROUND_HALF_UP)
    return CreditQuote(rate=rate, usd_value=usd_value, credits=int(credits), amount_cents=int(amount_cents))


async def find_ledger_by_hash(
    sql_session: AsyncSession, txn_hash: str
) -> Optional[LedgerTransactionModel]:
    result = await sql_session.execute(
        select(LedgerTransactionModel).where(
            LedgerTransactionModel.crypto_transaction_hash == txn_hash
        )
    )
    return result.scalars().first()


async def find_ledger_for_payment(
    sql_session: AsyncSession, payment_id: str
) -> Optional[LedgerTransactionModel]:
    result = await sql_session.execute(
        select(LedgerTransactionModel).where(LedgerTransactionModel.crypto_payment_id == payment_id)
    )
    return result.scalars().first()


async def list_user_ledger(
    sql_session: AsyncSession, user_id: str, limit: int = 50
) -> List[LedgerTransactionModel]:
    result = await sql_session.execute(
        select(LedgerTransactionModel)
        .where(LedgerTransactionModel.user_id == uuid.UUID(user_id))
        .order_by(LedgerTransactionModel.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def outcome_from_ledger(
    sql_session: AsyncSession, ledger: LedgerTransactionModel
) -> SettlementOutcome:
    return SettlementOutcome(
        quota_added=int(ledger.quota_amount),
        new_available_credits=await get_available_credits(sql_session, str(ledger.user_id)),
        transaction_id=str(ledger.id),
        amount_usd=ledger.amount / 100,
        confirmation_count=int(ledger.confirmation_count),
        already_processed=True,
    )


class CreditSettlementEngine:
    def __init__(self, price_feed: PriceFeedCache, usd_per_credit: Optional[float] = None):
        self.price_feed = price_feed
        self.usd_per_credit = usd_per_credit or env_float(
            get_usd_per_credit_env(), DEFAULT_USD_PER_CREDIT
        )

    async def settle(
        self,
        sql_session: AsyncSession,
        payment: CryptoPaymentModel,
        verification: VerificationResult,
    ) -> SettlementOutcome:
        txn_hash = payment.transaction_hash
        payment_id = payment.payment_id

        existing = await find_ledger_by_hash(sql_session, txn_hash)
        if existing:
            return await self._resolve_existing(sql_session, existing, payment, verification)

        if verification.amount is None:
            raise VerificationFailed("Transferred amount could not be determined from the transaction")

        rate = await self.price_feed.get_rate(payment.token)
        quote = quote_credits(verification.amount, rate, self.usd_per_credit)
        logger.info(
            f"{payment.token}->USD rate {rate}: {verification.amount} {payment.token} = "
            f"${quote.usd_value:.2f} -> {quote.credits} credits"
        )
        if quote.credits <= 0:
            raise InsufficientAmount(float(quote.usd_value), self.usd_per_credit)

        user_id = str(payment.user_id)
        if not await get_user(sql_session, user_id):
            raise PaymentNotFound("User not found")
        plan = await get_plan(sql_session, str(payment.plan_id))
        plan_suffix = f" - {plan.name}" if plan else ""

        ledger = LedgerTransactionModel(
            user_id=payment.user_id,
            amount=quote.amount_cents,
            currency="USD",
            quota_amount=quote.credits,
            status="succeeded",
            payment_method="crypto",
            description=(
                f"Purchase {quote.credits} credits via {payment.network} (dynamic rate){plan_suffix}"
            ),
            crypto_transaction_hash=txn_hash,
            crypto_network=payment.network,
            crypto_token=payment.token,
            crypto_payment_id=payment_id,
            plan_id=plan.id if plan else None,
            plan_name=plan.name if plan else None,
            confirmation_count=int(verification.confirmation_count or 0),
        )
        ledger_id = ledger.id
        try:
            sql_session.add(ledger)
            await increment_credits(sql_session, user_id, quote.credits)
            await increment_spend(sql_session, user_id, float(quote.usd_value))
            mark_confirmed(payment, verification, float(quote.usd_value))
            sql_session.add(payment)
            await sql_session.commit()
        except IntegrityError:
            await sql_session.rollback()
            logger.warning(f"Concurrent settlement detected for {txn_hash}")
            existing = await find_ledger_by_hash(sql_session, txn_hash)
            if existing and existing.crypto_payment_id == payment_id:
                return await outcome_from_ledger(sql_session, existing)
            raise DuplicateTransactionHash(
                "This transaction hash has already been used for another payment"
            )

        logger.info(
            f"Crypto payment confirmed: {payment_id} - user {user_id} received {quote.credits} credits"
        )
        return SettlementOutcome(
            quota_added=quote.credits,
            new_available_credits=await get_available_credits(sql_session, user_id),
            transaction_id=str(ledger_id),
            amount_usd=float(quote.usd_value),
            confirmation_count=int(verification.confirmation_count or 0),
        )

    async def _resolve_existing(
        self,
        sql_session: AsyncSession,
        existing: LedgerTransactionModel,
        payment: CryptoPaymentModel,
        verification: VerificationResult,
    ) -> SettlementOutcome:
        if existing.crypto_payment_id != payment.payment_id:
            logger.warning(
                f"Transaction {existing.crypto_transaction_hash} already settled for payment "
                f"{existing.crypto_payment_id}"
            )
            raise DuplicateTransactionHash(
                "This transaction hash has already been used for another payment"
            )
        # Credits were granted; finish the confirmation if it did not land.
        if payment.status != CryptoPaymentStatus.CONFIRMED.value:
            mark_confirmed(payment, verification, existing.amount / 100)
            sql_session.add(payment)
            await sql_session.commit()
        logger.info(f"Transaction already processed: {existing.crypto_transaction_hash}")
        return await outcome_from_ledger(sql_session, existing)


_settlement_engine: Optional[CreditSettlementEngine] = None


def get_credit_settlement_engine() -> CreditSettlementEngine:
    global _settlement_engine
    if _settlement_engine is None:
        _settlement_engine = CreditSettlementEngine(get_price_feed_cache())
    return _settlement_engine