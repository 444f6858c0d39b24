"""
Storefront Inventory - FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import SQLAlchemyError

from storefront.core.config import get_settings
from storefront.core.exceptions import StorefrontError
from storefront.core.redis_client import close_redis
from storefront.db.database import engine, Base
from storefront.middleware.auth import JWTAuthMiddleware
from storefront.middleware.idempotency import IdempotencyMiddleware
from storefront.middleware.rate_limiter import SlipRateLimiter
from storefront.models import cart, catalog, ledger, order  # noqa: F401  (register tables)
from storefront.api import admin_inventory, admin_orders, cron, health, orders, webhooks
from storefront.api import cart as cart_api

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Storefront Inventory",
    description="Stock reservations, checkout, reaper and payment handling over one consistent store.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: auth sets request.state.user for the two below
app.add_middleware(IdempotencyMiddleware)
app.add_middleware(SlipRateLimiter)
app.add_middleware(JWTAuthMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code, **exc.details},
    )


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    user = getattr(request.state, "user", None) or {}
    logger.error(
        "Store failure on %s %s (user=%s)", request.method, request.url.path, user.get("sub"),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Store unavailable, nothing was changed. Safe to retry.", "error": "store_unavailable"},
    )


app.include_router(cart_api.router)
app.include_router(orders.router)
app.include_router(webhooks.router)
app.include_router(cron.router)
app.include_router(admin_inventory.router)
app.include_router(admin_orders.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
