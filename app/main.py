"""
Condo payments API.

Wires the Flow client, database and Redis lifecycles around the payments
router and renders PaymentError as a JSON body with its HTTP status.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.payments import router as payments_router
from app.config import settings
from app.database import close_db, init_db
from app.errors import GatewayError, PaymentError
from app.logging_config import configure_logging
from app.redis import RedisClient
from app.schemas import ErrorOut
from app.services.flow_service import FlowClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    configure_logging()

    # FlowSigner raises ConfigurationError here on a blank secret
    app.state.flow_client = FlowClient(settings)
    logger.info(f"Payments API starting ({settings.app_env}), Flow at {settings.flow_api_url}")

    if settings.is_development:
        await init_db()

    try:
        yield
    finally:
        await app.state.flow_client.aclose()
        await RedisClient.close()
        await close_db()
        logger.info("Payments API stopped")


app = FastAPI(
    title="Condo Payments",
    description="Flow checkout and reconciliation for common expenses",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else settings.cors_origins,
    allow_credentials=not settings.is_development,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    log = logger.warning if isinstance(exc, GatewayError) else logger.info
    log(f"{request.method} {request.url.path} -> {exc.http_status} {exc.kind.value}: {exc}")
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorOut(error=exc.kind.value, message=exc.message).model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorOut(error="internal_error", message="Internal Server Error").model_dump(),
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy", "app": settings.app_name, "env": settings.app_env}


app.include_router(payments_router, prefix="/payments", tags=["payments"])
