import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.sql.user_account import DEFAULT_AVAILABLE_CREDITS, UserAccountModel
from utils.get_env import env_int, get_default_available_credits_env


def get_default_available_credits() -> int:
    return max(0, env_int(get_default_available_credits_env(), DEFAULT_AVAILABLE_CREDITS))


def get_request_user_id(request: Request) -> str:
    raw_user_id = request.headers.get("x-user-id") or request.headers.get("x-session-id") or "anonymous"
    raw_user_id = raw_user_id.strip() or "anonymous"
    try:
        return str(uuid.UUID(raw_user_id))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, raw_user_id))


async def get_user(sql_session: AsyncSession, user_id: str) -> Optional[UserAccountModel]:
    result = await sql_session.execute(
        select(UserAccountModel).where(UserAccountModel.id == uuid.UUID(user_id))
    )
    return result.scalars().first()


async def get_or_create_user(sql_session: AsyncSession, user_id: str) -> UserAccountModel:
    user = await get_user(sql_session, user_id)
    if user:
        return user

    now_utc = datetime.now(timezone.utc)
    user = UserAccountModel(
        id=uuid.UUID(user_id),
        available_credits=get_default_available_credits(),
        created_at=now_utc,
        updated_at=now_utc,
    )
    sql_session.add(user)
    await sql_session.commit()
    await sql_session.refresh(user)
    return user


async def increment_credits(sql_session: AsyncSession, user_id: str, amount: int) -> None:
    """Atomic in-database increment; the caller owns the commit."""
    await sql_session.execute(
        update(UserAccountModel)
        .where(UserAccountModel.id == uuid.UUID(user_id))
        .values(
            available_credits=UserAccountModel.available_credits + int(amount),
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )


async def increment_spend(sql_session: AsyncSession, user_id: str, usd_amount: float) -> None:
    """Atomic in-database increment; the caller owns the commit."""
    await sql_session.execute(
        update(UserAccountModel)
        .where(UserAccountModel.id == uuid.UUID(user_id))
        .values(
            total_spent=UserAccountModel.total_spent + float(usd_amount),
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )


async def get_available_credits(sql_session: AsyncSession, user_id: str) -> int:
    result = await sql_session.execute(
        select(UserAccountModel.available_credits).where(UserAccountModel.id == uuid.UUID(user_id))
    )
    return int(result.scalar() or 0)
