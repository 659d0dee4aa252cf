import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.crypto import (
    ALLOWED_STATUS_TRANSITIONS,
    NETWORK_TOKENS,
    CryptoNetwork,
    CryptoPaymentStatus,
)
from models.sql.crypto_payment import CryptoPaymentModel
from models.sql.payment_plan import PaymentPlanModel
from services.chain_verification import VerificationResult, normalize_transaction_hash
from services.payment_errors import (
    CryptoPaymentNotConfigured,
    DuplicateTransactionHash,
    InvalidPaymentRequest,
    PaymentExpired,
    PaymentForbidden,
    PaymentNotFound,
)
from services.payment_plans import get_plan
from utils.config_validator import is_placeholder_value
from utils.get_env import (
    env_int,
    get_bep20_wallet_address_env,
    get_crypto_payment_expiry_minutes_env,
    get_sol_wallet_address_env,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MINUTES = 30

_WALLET_ENV_GETTERS = {
    CryptoNetwork.BEP20: get_bep20_wallet_address_env,
    CryptoNetwork.SOL: get_sol_wallet_address_env,
}


class InvalidStatusTransition(RuntimeError):
    pass


class SubmissionOutcome(NamedTuple):
    payment: CryptoPaymentModel
    already_processed: bool


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(payment: CryptoPaymentModel, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return now > as_utc(payment.expires_at)


def get_expiry_minutes() -> int:
    return max(1, env_int(get_crypto_payment_expiry_minutes_env(), DEFAULT_EXPIRY_MINUTES))


def advance_status(payment: CryptoPaymentModel, new_status: CryptoPaymentStatus) -> None:
    current = CryptoPaymentStatus(payment.status)
    if new_status not in ALLOWED_STATUS_TRANSITIONS[current]:
        raise InvalidStatusTransition(
            f"Payment {payment.payment_id} cannot move from {current.value} to {new_status.value}"
        )
    payment.status = new_status.value
    payment.updated_at = datetime.now(timezone.utc)


def resolve_receiving_wallet(network: CryptoNetwork) -> Tuple[str, str]:
    address = (_WALLET_ENV_GETTERS[network]() or "").strip()
    if not address or is_placeholder_value(address):
        logger.error(f"Receiving wallet for {network.value} is not configured")
        raise CryptoPaymentNotConfigured()
    return address, NETWORK_TOKENS[network]


def generate_payment_id() -> str:
    return f"crypto-{uuid.uuid4().hex}"


def build_memo(user_id: str, payment_id: str) -> str:
    compact_user = user_id.replace("-", "")
    return f"TXN-{compact_user[-6:]}-{payment_id[-6:]}".upper()


async def create_request(
    sql_session: AsyncSession,
    *,
    user_id: str,
    plan_id: str,
    network: CryptoNetwork,
) -> Tuple[CryptoPaymentModel, PaymentPlanModel]:
    plan = await get_plan(sql_session, plan_id)
    if not plan or not plan.is_active:
        raise PaymentNotFound("Payment plan not found or inactive")

    wallet_address, token = resolve_receiving_wallet(network)
    payment_id = generate_payment_id()
    now_utc = datetime.now(timezone.utc)

    payment = CryptoPaymentModel(
        payment_id=payment_id,
        user_id=uuid.UUID(user_id),
        plan_id=plan.id,
        network=network.value,
        token=token,
        amount=float(plan.price),
        wallet_address=wallet_address,
        memo=build_memo(user_id, payment_id),
        status=CryptoPaymentStatus.PENDING.value,
        expires_at=now_utc + timedelta(minutes=get_expiry_minutes()),
        created_at=now_utc,
        updated_at=now_utc,
    )
    sql_session.add(payment)
    await sql_session.commit()
    await sql_session.refresh(payment)
    logger.info(f"Crypto payment created: {payment_id} ({network.value}) for user {user_id}")
    return payment, plan


async def find_payment(sql_session: AsyncSession, payment_id: str) -> Optional[CryptoPaymentModel]:
    result = await sql_session.execute(
        select(CryptoPaymentModel).where(CryptoPaymentModel.payment_id == payment_id)
    )
    return result.scalars().first()


async def get_owned_payment(
    sql_session: AsyncSession, *, payment_id: str, user_id: str
) -> CryptoPaymentModel:
    payment = await find_payment(sql_session, payment_id)
    if not payment:
        raise PaymentNotFound("Payment not found")
    if payment.user_id != uuid.UUID(user_id):
        raise PaymentForbidden("Access denied")
    return payment


async def find_confirmed_by_hash(
    sql_session: AsyncSession, txn_hash: str, exclude_id: Optional[uuid.UUID] = None
) -> Optional[CryptoPaymentModel]:
    query = select(CryptoPaymentModel).where(
        CryptoPaymentModel.transaction_hash == txn_hash,
        CryptoPaymentModel.status == CryptoPaymentStatus.CONFIRMED.value,
    )
    if exclude_id is not None:
        query = query.where(CryptoPaymentModel.id != exclude_id)
    result = await sql_session.execute(query)
    return result.scalars().first()


async def submit_transaction(
    sql_session: AsyncSession,
    *,
    payment_id: str,
    user_id: str,
    txn_hash: str,
) -> SubmissionOutcome:
    """
    Attach a transaction hash to a payment and move it to `processing`.

    A confirmed payment short-circuits with `already_processed=True` so client
    retries look like success. Expiry is only checked while the payment is still
    `pending`; once processing, late verification is honored.
    """
    payment = await get_owned_payment(sql_session, payment_id=payment_id, user_id=user_id)

    if payment.status == CryptoPaymentStatus.CONFIRMED.value:
        logger.info(f"Payment {payment_id} already confirmed, skipping verification")
        return SubmissionOutcome(payment, True)

    normalized_hash = normalize_transaction_hash(CryptoNetwork(payment.network), txn_hash)

    if await find_confirmed_by_hash(sql_session, normalized_hash, exclude_id=payment.id):
        logger.warning(f"Transaction {normalized_hash} already used for another payment")
        raise DuplicateTransactionHash(
            "This transaction hash has already been used for another payment"
        )

    if payment.status == CryptoPaymentStatus.PENDING.value and is_expired(payment):
        advance_status(payment, CryptoPaymentStatus.EXPIRED)
        sql_session.add(payment)
        await sql_session.commit()
        raise PaymentExpired("This payment has expired. Please create a new payment.")
    if payment.status == CryptoPaymentStatus.EXPIRED.value:
        raise PaymentExpired("This payment has expired. Please create a new payment.")
    if payment.status == CryptoPaymentStatus.FAILED.value:
        raise InvalidPaymentRequest(
            f"This payment has failed ({payment.error_message}). Please create a new payment."
        )

    advance_status(payment, CryptoPaymentStatus.PROCESSING)
    payment.transaction_hash = normalized_hash
    payment.error_message = None
    sql_session.add(payment)
    await sql_session.commit()
    await sql_session.refresh(payment)
    return SubmissionOutcome(payment, False)


def mark_confirmed(
    payment: CryptoPaymentModel, verification: VerificationResult, usd_amount: float
) -> None:
    """Caller commits together with the settlement records."""
    advance_status(payment, CryptoPaymentStatus.CONFIRMED)
    payment.confirmed_at = datetime.now(timezone.utc)
    payment.verified_amount = verification.amount
    payment.verified_from_address = verification.from_address
    payment.confirmation_count = int(verification.confirmation_count or 0)
    payment.amount = round(float(usd_amount), 2)
    payment.error_message = None


async def mark_failed(sql_session: AsyncSession, payment: CryptoPaymentModel, message: str) -> None:
    advance_status(payment, CryptoPaymentStatus.FAILED)
    payment.error_message = message
    sql_session.add(payment)
    await sql_session.commit()


async def record_retryable_error(
    sql_session: AsyncSession, payment: CryptoPaymentModel, message: str
) -> None:
    # Stays `processing` so the same hash can be resubmitted later.
    payment.error_message = message
    payment.updated_at = datetime.now(timezone.utc)
    sql_session.add(payment)
    await sql_session.commit()


async def sweep_expired(sql_session: AsyncSession, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    result = await sql_session.execute(
        update(CryptoPaymentModel)
        .where(
            CryptoPaymentModel.status == CryptoPaymentStatus.PENDING.value,
            CryptoPaymentModel.expires_at < now,
        )
        .values(status=CryptoPaymentStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await sql_session.commit()
    expired_count = int(result.rowcount or 0)
    if expired_count:
        logger.info(f"Expired {expired_count} pending crypto payments")
    return expired_count


async def list_pending_payments(sql_session: AsyncSession, user_id: str) -> List[CryptoPaymentModel]:
    result = await sql_session.execute(
        select(CryptoPaymentModel)
        .where(
            CryptoPaymentModel.user_id == uuid.UUID(user_id),
            CryptoPaymentModel.status == CryptoPaymentStatus.PENDING.value,
            CryptoPaymentModel.expires_at > datetime.now(timezone.utc),
        )
        .order_by(CryptoPaymentModel.created_at.desc())
    )
    return list(result.scalars().all())
