"""
Invoice Routes
Store invoices with their already-extracted line items
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from pydantic import BaseModel, Field
from datetime import date
from decimal import Decimal
from typing import Optional, List
import logging

from app.infrastructure.db.database import get_db
from app.infrastructure.db.repositories.invoice_repository import InvoiceRepository
from app.infrastructure.db.repositories.source_mapping_repository import SourceMappingRepository
from app.domain.errors import InvoiceValidationError
from app.domain.models import Invoice, LineItem
from app.ingestion.parser_registry import LineItemParserRegistry

logger = logging.getLogger(__name__)
router = APIRouter()


# ------------------------------------------------------------------
# Request / Response Models
# ------------------------------------------------------------------

class LineItemPayload(BaseModel):
    sequence_number: int = Field(..., gt=0)
    asset_code: Optional[str] = None
    operation_type: Optional[str] = Field(None, description="C/V, COMPRA/VENDA or BUY/SELL")
    quantity: Optional[int] = None
    unit_price: Optional[Decimal] = None
    total_value: Optional[Decimal] = None
    trade_date: Optional[date] = None
    is_day_trade: bool = False
    observations: Optional[str] = None
    market_type: Optional[str] = None


class InvoiceCreateRequest(BaseModel):
    invoice_number: str
    trading_date: date
    brokerage: str
    user_id: str
    settlement_date: Optional[date] = None
    items: List[LineItemPayload] = Field(default_factory=list)


class DocumentImportRequest(BaseModel):
    user_id: str
    text: str
    filename: str = ""


class LineItemResponse(BaseModel):
    id: int
    sequence_number: int
    asset_code: Optional[str]
    operation_type: Optional[str]
    quantity: Optional[int]
    unit_price: Optional[float]
    total_value: Optional[float]
    trade_date: Optional[date]
    is_day_trade: bool
    observations: Optional[str]
    mapped_operation_id: Optional[int] = None


class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    trading_date: date
    brokerage: str
    user_id: str
    processing_status: str
    processing_attempts: int
    items: List[LineItemResponse]


def get_parser_registry(request: Request) -> LineItemParserRegistry:
    return request.app.state.parser_registry


# ------------------------------------------------------------------
# Routes
# ------------------------------------------------------------------

@router.post("", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    request: InvoiceCreateRequest,
    db: AsyncSession = Depends(get_db)
):
    """Store an invoice and its line items (status PENDING)"""
    numbers = [item.sequence_number for item in request.items]
    if len(numbers) != len(set(numbers)):
        raise HTTPException(status_code=400, detail="Line item sequence numbers must be unique")

    invoice = Invoice(
        invoice_number=request.invoice_number,
        trading_date=request.trading_date,
        brokerage=request.brokerage,
        user_id=request.user_id,
        settlement_date=request.settlement_date,
    )
    items = [LineItem(**item.model_dump()) for item in request.items]
    return await _store(db, invoice, items)


@router.post("/import", response_model=InvoiceResponse, status_code=201)
async def import_document(
    request: DocumentImportRequest,
    db: AsyncSession = Depends(get_db),
    registry: LineItemParserRegistry = Depends(get_parser_registry)
):
    """Parse raw document text with the first matching registered parser"""
    try:
        parsed = registry.parse(request.text, request.user_id, filename=request.filename)
    except InvoiceValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return await _store(db, parsed.invoice, list(parsed.items))


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Invoice with its line items and the operation each item maps to"""
    repo = InvoiceRepository(db)
    invoice = await repo.get(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail=f"Invoice {invoice_id} not found")

    items = await repo.list_items(invoice_id)
    mappings = await SourceMappingRepository(db).list_for_invoice(invoice_id)
    return _to_response(invoice, items, {m.line_item_id: m.operation_id for m in mappings})


async def _store(db: AsyncSession, invoice: Invoice, items: List[LineItem]) -> InvoiceResponse:
    repo = InvoiceRepository(db)
    try:
        stored = await repo.create(invoice, items)
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=409,
            detail=f"Invoice {invoice.invoice_number} already exists for this brokerage"
        )
    await db.commit()

    logger.info(
        "🧾 Stored invoice %s (%d items) for user %s",
        stored.invoice_number, len(items), stored.user_id,
    )
    return _to_response(stored, await repo.list_items(stored.id), {})


def _to_response(invoice: Invoice, items: List[LineItem], mapped: dict) -> InvoiceResponse:
    return InvoiceResponse(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        trading_date=invoice.trading_date,
        brokerage=invoice.brokerage,
        user_id=invoice.user_id,
        processing_status=invoice.processing_status.value,
        processing_attempts=invoice.processing_attempts,
        items=[
            LineItemResponse(
                id=item.id,
                sequence_number=item.sequence_number,
                asset_code=item.asset_code,
                operation_type=item.operation_type,
                quantity=item.quantity,
                unit_price=float(item.unit_price) if item.unit_price is not None else None,
                total_value=float(item.total_value) if item.total_value is not None else None,
                trade_date=item.trade_date,
                is_day_trade=item.is_day_trade,
                observations=item.observations,
                mapped_operation_id=mapped.get(item.id),
            )
            for item in items
        ],
    )
