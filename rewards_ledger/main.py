"""
FastAPI Application Entrypoint.

Sets up CORS, includes all routers, maps ledger errors to JSON responses,
and on startup creates tables, seeds demo data and warms the used-receipt
cache.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rewards_ledger.api import (
    admin_router,
    health_router,
    points_router,
    receipts_router,
    rewards_router,
    users_router,
)
from rewards_ledger.api.deps import get_accumulator, get_intake_guard
from rewards_ledger.core.config import get_settings
from rewards_ledger.core.database import SessionLocal, init_db
from rewards_ledger.core.errors import LedgerError
from rewards_ledger.services.seed_data import seed_database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: init DB, seed and warm the receipt cache on startup."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    init_db()
    logger.info("Database tables initialized")

    db = SessionLocal()
    try:
        if settings.SEED_DEMO_DATA:
            seed_database(db, get_accumulator())
        get_intake_guard().warm_cache(db)
    finally:
        db.close()

    yield

    pending = get_accumulator().pending_entries
    if pending:
        logger.warning("[POINTS] Shutting down with %d unwritten ledger entries", pending)
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Loyalty points ledger: receipt scanning with duplicate protection, "
        "atomic balance updates with an audit trail, and reward redemption "
        "with timed expiry and refunds."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.error_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include all routers under /api/v1
app.include_router(health_router, prefix=settings.API_PREFIX)
app.include_router(users_router, prefix=settings.API_PREFIX)
app.include_router(receipts_router, prefix=settings.API_PREFIX)
app.include_router(points_router, prefix=settings.API_PREFIX)
app.include_router(rewards_router, prefix=settings.API_PREFIX)
app.include_router(admin_router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": f"{settings.API_PREFIX}/health",
    }
