"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import lots, preferences, reconciliation
from database import get_session_local, init_db
from logging_config import setup_logging
from services.lot_store import SqlLotStore
from services.preference_service import PreferenceService

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the lot tables and report the stored lot sets on startup."""
    init_db()
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        logger.info(
            "Lot store ready: %d account/symbol lot sets, tracking method %s",
            len(SqlLotStore(db).keys()),
            PreferenceService.get_tracking_method(db).value,
        )
    finally:
        db.close()
    yield


app = FastAPI(
    title="Tax Lot Ledger",
    description="Tax-lot accounting, holdings replay and snapshot reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Tracking-method routes are registered before the per-account lot routes
app.include_router(lots.tracking_router)
app.include_router(lots.router)
app.include_router(reconciliation.router)
app.include_router(preferences.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
