"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.tm_admin.api.router import router as admin_router
from src.tm_common.database import engine
from src.tm_common.errors import AppError, ListingValidationError
from src.tm_common.redis_client import close_redis, get_redis
from src.tm_common.response import error_response
from src.tm_escrow.infrastructure.http_client import HttpEscrowClient
from src.tm_gateway.container import build_container
from src.tm_gateway.middleware.request_log import RequestLogMiddleware
from src.tm_listing.api.router import router as listing_router
from src.tm_listing.infrastructure.cache import RedisListingCache

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB, wire services, start background jobs. Shutdown: reverse."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    redis = await get_redis()
    cache = (
        RedisListingCache(
            redis,
            listing_ttl_seconds=settings.LISTING_CACHE_TTL_SECONDS,
            query_ttl_seconds=settings.LISTINGS_QUERY_CACHE_TTL_SECONDS,
        )
        if redis is not None
        else None
    )
    escrow = HttpEscrowClient()
    container = build_container(settings, escrow, cache=cache)
    app.state.container = container
    if settings.SCHEDULER_ENABLED:
        container.scheduler.start()
    else:
        logger.info("Background jobs disabled (SCHEDULER_ENABLED=false)")
    yield
    # Shutdown
    await container.scheduler.stop()
    await escrow.aclose()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    details = exc.reasons if isinstance(exc, ListingValidationError) else None
    resp = error_response(exc.code, exc.public_message, details)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(listing_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
