from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.db.database import get_db

router = APIRouter()


@router.get("/health")
async def health(request: Request, db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as exc:
        db_status = f"error: {exc}"

    store = getattr(request.app.state, "session_store", None)
    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "service": "Trade Ledger",
        "database": db_status,
        "session_store": type(store).__name__ if store else "not_initialized",
    }
