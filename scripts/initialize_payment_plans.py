"""
Seed the default credit plans.

Usage: python -m scripts.initialize_payment_plans
Plans are matched by name, so running it again only adds what is missing.
"""

import asyncio
import logging

from services.database import create_db_and_tables, get_engine, get_session_maker
from services.payment_plans import ensure_default_plans

logger = logging.getLogger(__name__)


async def initialize_payment_plans() -> int:
    await create_db_and_tables()
    async with get_session_maker()() as sql_session:
        created = await ensure_default_plans(sql_session)
    for plan in created:
        logger.info(f"Created plan {plan.name}: {plan.quota_amount} credits for ${plan.price}")
    if not created:
        logger.info("All default payment plans already exist")
    await get_engine().dispose()
    return len(created)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(initialize_payment_plans())
