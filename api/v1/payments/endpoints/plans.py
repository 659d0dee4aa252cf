from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from services.crypto_payment_service import list_payment_plans
from services.database import get_async_session


PLANS_ROUTER = APIRouter(tags=["Payment Plans"])


@PLANS_ROUTER.get("/plans")
async def payment_plans(sql_session: AsyncSession = Depends(get_async_session)):
    plans = await list_payment_plans(sql_session)
    return {"success": True, "data": plans}
