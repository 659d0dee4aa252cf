import uuid
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from models.sql.payment_plan import PaymentPlanModel


DEFAULT_PAYMENT_PLANS = [
    {
        "name": "Starter Pack",
        "description": "Perfect for casual players",
        "quota_amount": 20,
        "price": 10.0,
        "sort_order": 1,
    },
    {
        "name": "Player Pack",
        "description": "Great for regular players",
        "quota_amount": 55,
        "price": 25.0,
        "sort_order": 2,
    },
    {
        "name": "Pro Pack",
        "description": "For serious poker players",
        "quota_amount": 120,
        "price": 50.0,
        "sort_order": 3,
    },
]


async def get_plan(sql_session: AsyncSession, plan_id: str) -> Optional[PaymentPlanModel]:
    try:
        parsed_plan_id = uuid.UUID(str(plan_id))
    except ValueError:
        return None
    result = await sql_session.execute(
        select(PaymentPlanModel).where(PaymentPlanModel.id == parsed_plan_id)
    )
    return result.scalars().first()


async def list_active_plans(sql_session: AsyncSession) -> List[PaymentPlanModel]:
    result = await sql_session.execute(
        select(PaymentPlanModel)
        .where(PaymentPlanModel.is_active == True)
        .order_by(PaymentPlanModel.sort_order, PaymentPlanModel.price)
    )
    return list(result.scalars().all())


async def ensure_default_plans(sql_session: AsyncSession) -> List[PaymentPlanModel]:
    """Insert any default plan missing by name; returns the plans created."""
    existing_result = await sql_session.execute(select(PaymentPlanModel.name))
    existing_names = set(existing_result.scalars().all())

    created = []
    for plan_data in DEFAULT_PAYMENT_PLANS:
        if plan_data["name"] in existing_names:
            continue
        plan = PaymentPlanModel(**plan_data)
        sql_session.add(plan)
        created.append(plan)
    if created:
        await sql_session.commit()
    return created
