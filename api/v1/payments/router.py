from fastapi import APIRouter

from api.v1.payments.endpoints.crypto import CRYPTO_ROUTER, TRANSACTIONS_ROUTER
from api.v1.payments.endpoints.plans import PLANS_ROUTER


API_V1_PAYMENTS_ROUTER = APIRouter(prefix="/api/v1/payments")

API_V1_PAYMENTS_ROUTER.include_router(PLANS_ROUTER)
API_V1_PAYMENTS_ROUTER.include_router(CRYPTO_ROUTER)
API_V1_PAYMENTS_ROUTER.include_router(TRANSACTIONS_ROUTER)
