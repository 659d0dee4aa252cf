from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from models.sql.crypto_payment import CryptoPaymentModel
from models.sql.ledger_transaction import LedgerTransactionModel
from models.sql.payment_plan import PaymentPlanModel
from models.sql.user_account import UserAccountModel
from utils.db_utils import get_database_url_and_connect_args


PAYMENT_TABLES = [
    UserAccountModel.__table__,
    PaymentPlanModel.__table__,
    CryptoPaymentModel.__table__,
    LedgerTransactionModel.__table__,
]

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        database_url, connect_args = get_database_url_and_connect_args()
        _engine = create_async_engine(
            database_url, connect_args=connect_args, pool_pre_ping=True
        )
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_maker()() as session:
        yield session


async def create_db_and_tables(engine: Optional[AsyncEngine] = None) -> None:
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(
            lambda sync_conn: SQLModel.metadata.create_all(sync_conn, tables=PAYMENT_TABLES)
        )
