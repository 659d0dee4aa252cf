from contextlib import asynccontextmanager, suppress
import asyncio
import logging
import os

from fastapi import FastAPI

from services.crypto_payment_ledger import sweep_expired
from services.database import create_db_and_tables, get_session_maker
from utils.config_validator import setup_config_logging
from utils.get_env import env_float, get_crypto_sweep_interval_seconds_env

logger = logging.getLogger(__name__)


async def sweep_expired_payments_forever(interval_seconds: float) -> None:
    """Move overdue pending payment requests to `expired` on a fixed interval."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with get_session_maker()() as sql_session:
                await sweep_expired(sql_session)
        except Exception:
            logger.exception("Crypto payment expiry sweep failed")


@asynccontextmanager
async def app_lifespan(_: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Creates the payment tables and runs the periodic expiry sweep.

    """
    # Validate and report configuration on startup
    setup_config_logging()
    strict_startup_checks = (
        os.getenv("STRICT_STARTUP_CHECKS", "false").strip().lower() == "true"
    )

    # Set STRICT_STARTUP_CHECKS=true to fail fast when the database is unreachable.
    db_startup_timeout_seconds = float(os.getenv("DB_STARTUP_TIMEOUT_SECONDS", "20"))
    try:
        await asyncio.wait_for(create_db_and_tables(), timeout=db_startup_timeout_seconds)
    except Exception as e:
        if strict_startup_checks:
            raise
        logger.warning(f"Startup DB warning: {e}")

    sweep_interval = env_float(get_crypto_sweep_interval_seconds_env(), 300)
    sweep_task = None
    if sweep_interval > 0:
        sweep_task = asyncio.create_task(sweep_expired_payments_forever(sweep_interval))
    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweep_task
