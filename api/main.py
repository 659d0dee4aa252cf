from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.lifespan import app_lifespan
from api.v1.payments.router import API_V1_PAYMENTS_ROUTER
from api.v1.system.router import SYSTEM_ROUTER
from services.payment_errors import CryptoPaymentError


app = FastAPI(lifespan=app_lifespan)


@app.exception_handler(CryptoPaymentError)
async def crypto_payment_error_handler(_: Request, exc: CryptoPaymentError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.detail},
    )


# Routers
app.include_router(API_V1_PAYMENTS_ROUTER)
app.include_router(SYSTEM_ROUTER)

# Middlewares
origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
