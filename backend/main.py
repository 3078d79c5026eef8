"""TikTok Stats Dashboard - FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from config import get_settings
from database import engine
from models import Base
from routers import (
    accounts_router,
    cron_router,
    oauth_router,
    users_router,
)
from services.redis_store import RedisStore
from services.scheduler import start_scheduler, stop_scheduler
from middleware.rate_limit import limiter, rate_limit_exceeded_handler

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - create tables on startup, cleanup on shutdown."""
    # Startup: create database tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Check Redis connectivity
    redis_ok = await RedisStore.health_check()
    if redis_ok:
        logger.info("Redis connection established")
    else:
        logger.warning("Redis not available - ingestion runs will not be recorded")

    # Security check: Warn if using default secret in production
    if not settings.debug and settings.jwt_secret == "dev-secret-change-in-production":
        logger.warning(
            "SECURITY WARNING: Using default JWT secret in production! "
            "Set JWT_SECRET to a secure random value."
        )

    if not settings.tiktok_client_key or not settings.tiktok_client_secret:
        logger.warning("TIKTOK_CLIENT_KEY / TIKTOK_CLIENT_SECRET not set - OAuth will fail")

    if not settings.cron_secret:
        logger.warning("CRON_SECRET not set - /api/cron is open to anyone")

    # Start background scheduler for the daily ingestion
    if settings.scheduler_enabled:
        start_scheduler()

    yield

    # Shutdown: stop scheduler and close Redis connection pool
    stop_scheduler()
    await RedisStore.close()
    await engine.dispose()


app = FastAPI(
    title="TikTok Stats Dashboard API",
    description="Connect TikTok creator accounts and track their daily stats",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(accounts_router)
app.include_router(cron_router)
app.include_router(oauth_router)
app.include_router(users_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "tiktok-stats"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "TikTok Stats Dashboard API",
        "version": "0.1.0",
        "docs": "/docs",
    }
