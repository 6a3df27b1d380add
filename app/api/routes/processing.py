"""
Processing Routes
Run invoice batches through detection and integration, track sessions
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Optional, List
import logging

from app.infrastructure.db.database import get_db
from app.infrastructure.db.repositories.unit_of_work import SqlAlchemyUnitOfWork
from app.domain.errors import SessionNotFoundError
from app.domain.models import BatchResult
from app.domain.services.processing_orchestrator import ProcessingOrchestrator
from app.domain.services.session_store import ProcessingSession, SessionStore

logger = logging.getLogger(__name__)
router = APIRouter()


# ------------------------------------------------------------------
# Request / Response Models
# ------------------------------------------------------------------

class BatchProcessingRequest(BaseModel):
    user_id: str
    invoice_ids: List[int] = Field(..., min_length=1)
    retry: bool = Field(False, description="Re-run the batch on database/network failures")


class ErrorResponse(BaseModel):
    category: str
    message: str
    user_message: str
    recoverable: bool


class BatchResponse(BaseModel):
    success: bool
    message: str
    session_id: Optional[str]
    progress: int
    cancelled: bool
    total_invoices: int
    valid_invoices: int
    invalid_invoices: int
    detected_operations: int
    consolidated_operations: int
    created_operations: int
    failed_operations: int
    success_rate: float
    processing_time_ms: int
    warnings: List[str]
    errors: List[ErrorResponse]
    error_summary: Optional[str] = None


class SessionResponse(BaseModel):
    id: str
    user_id: str
    invoice_ids: List[int]
    status: str
    progress: int
    message: str
    cancelled: bool
    started_at: datetime
    updated_at: datetime
    elapsed_seconds: float
    estimated_remaining_seconds: Optional[float]
    summary: dict[str, Any]


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


# ------------------------------------------------------------------
# Routes
# ------------------------------------------------------------------

@router.post("/batch", response_model=BatchResponse)
async def process_batch(
    request: BatchProcessingRequest,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store)
):
    """Process a batch of invoices for a user"""
    orchestrator = ProcessingOrchestrator(SqlAlchemyUnitOfWork(db), session_store=store)
    if request.retry:
        result = await orchestrator.process_batch_with_retry(request.invoice_ids, request.user_id)
    else:
        result = await orchestrator.process_batch(request.invoice_ids, request.user_id)
    return _batch_response(result)


@router.post("/invoices/{invoice_id}", response_model=BatchResponse)
async def process_invoice(
    invoice_id: int,
    user_id: str,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store)
):
    """Process a single invoice"""
    orchestrator = ProcessingOrchestrator(SqlAlchemyUnitOfWork(db), session_store=store)
    result = await orchestrator.process_single_invoice(invoice_id, user_id)
    return _batch_response(result)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store)
):
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found or expired")
    return _session_response(session)


@router.post("/sessions/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store)
):
    """Request cooperative cancellation (honoured before integration starts)"""
    try:
        session = await store.cancel(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    logger.info("⏹️ Cancellation requested for session %s", session_id)
    return _session_response(session)


def _batch_response(result: BatchResult) -> BatchResponse:
    return BatchResponse(
        success=result.success,
        message=result.message,
        session_id=result.session_id,
        progress=result.progress,
        cancelled=result.cancelled,
        total_invoices=result.total_invoices,
        valid_invoices=result.valid_invoices,
        invalid_invoices=result.invalid_invoices,
        detected_operations=result.detected_operations,
        consolidated_operations=result.consolidated_operations,
        created_operations=result.created_operations,
        failed_operations=result.failed_operations,
        success_rate=round(result.overall_success_rate, 2),
        processing_time_ms=result.processing_time_ms,
        warnings=result.warnings,
        errors=[
            ErrorResponse(
                category=error.category.value,
                message=error.message,
                user_message=error.user_message,
                recoverable=error.recoverable,
            )
            for error in result.errors
        ],
        error_summary=result.error_report.summary if result.error_report else None,
    )


def _session_response(session: ProcessingSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        user_id=session.user_id,
        invoice_ids=list(session.invoice_ids),
        status=session.status.value,
        progress=session.progress,
        message=session.message,
        cancelled=session.cancelled,
        started_at=session.started_at,
        updated_at=session.updated_at,
        elapsed_seconds=session.elapsed_seconds,
        estimated_remaining_seconds=session.estimated_remaining_seconds,
        summary=session.summary,
    )
