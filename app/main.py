"""
FastAPI Main Application
Invoice-to-operation processing and lot-based position ledger
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from app.config import settings
from app.core.logging import get_logger, setup_logging
from app.infrastructure.db.database import init_db, close_db
from app.domain.services.session_store import create_session_store
from app.ingestion.parser_registry import LineItemParserRegistry

setup_logging(
    settings.LOG_LEVEL,
    log_file=settings.LOG_FILE,
    max_bytes=settings.LOG_MAX_BYTES,
    backup_count=settings.LOG_BACKUP_COUNT,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager
    Database, session store and parser registry
    """
    # ===================
    # STARTUP
    # ===================
    logger.info("=" * 60)
    logger.info("🚀 Starting Trade Ledger")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    app.state.session_store = create_session_store()
    logger.info("✅ Session store: %s", settings.SESSION_STORE)

    app.state.parser_registry = LineItemParserRegistry()
    logger.info("✅ Parser registry ready")

    logger.info("   ✅ API Server: http://%s:%s", settings.API_HOST, settings.API_PORT)
    logger.info("   ✅ API Docs: http://%s:%s/docs", settings.API_HOST, settings.API_PORT)

    yield

    # ===================
    # SHUTDOWN
    # ===================
    logger.info("🛑 Shutting down Trade Ledger...")
    close_store = getattr(app.state.session_store, "close", None)
    if close_store is not None:
        await close_store()
    await close_db()
    logger.info("👋 Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Trade Ledger",
    description="Brokerage invoice processing with FIFO lot accounting",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Trade Ledger",
        "version": "1.0.0",
        "docs": "/docs"
    }


# Import and include routers
from app.api.routes import health, invoices, processing, positions  # noqa: E402

app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(invoices.router, prefix="/api/v1/invoices", tags=["Invoices"])
app.include_router(processing.router, prefix="/api/v1/processing", tags=["Processing"])
app.include_router(positions.router, prefix="/api/v1/positions", tags=["Positions"])
app.include_router(positions.operations_router, prefix="/api/v1/operations", tags=["Operations"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)
