"""
Position & Operation Routes
Read-only views over the lot-accounted ledger
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel
from datetime import date
from typing import Optional, List

from app.infrastructure.db.database import get_db
from app.infrastructure.db.repositories.operation_repository import OperationRepository
from app.infrastructure.db.repositories.position_repository import PositionRepository
from app.domain.services.position_calculator import PositionCalculator

router = APIRouter()
operations_router = APIRouter()


class PositionResponse(BaseModel):
    id: int
    asset_code: str
    direction: str
    status: str
    open_date: date
    close_date: Optional[date]
    total_quantity: int
    remaining_quantity: int
    average_price: float
    total_realized_profit: float
    total_realized_profit_percentage: float


class PositionSummaryResponse(BaseModel):
    open_positions: int
    partial_positions: int
    closed_positions: int
    long_positions: int
    short_positions: int
    total_invested_value: float
    total_realized_profit: float
    total_realized_profit_percentage: float


class OperationResponse(BaseModel):
    id: int
    asset_code: str
    side: str
    trade_type: str
    status: str
    entry_date: date
    exit_date: Optional[date]
    quantity: int
    entry_unit_price: float
    entry_total_value: float
    exit_unit_price: Optional[float]
    exit_total_value: Optional[float]
    profit_loss: float
    profit_loss_percentage: float


@router.get("", response_model=List[PositionResponse])
async def list_positions(
    user_id: str,
    db: AsyncSession = Depends(get_db)
):
    positions = await PositionRepository(db).list_for_user(user_id)
    return [
        PositionResponse(
            id=p.id,
            asset_code=p.asset_code,
            direction=p.direction.value,
            status=p.status.value,
            open_date=p.open_date,
            close_date=p.close_date,
            total_quantity=p.total_quantity,
            remaining_quantity=p.remaining_quantity,
            average_price=float(p.average_price),
            total_realized_profit=float(round(p.total_realized_profit, 2)),
            total_realized_profit_percentage=float(round(p.total_realized_profit_percentage, 2)),
        )
        for p in positions
    ]


@router.get("/summary", response_model=PositionSummaryResponse)
async def position_summary(
    user_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Portfolio totals: counts by status/direction, invested value, realized result"""
    positions = await PositionRepository(db).list_for_user(user_id)
    summary = PositionCalculator().summarize(positions)
    return PositionSummaryResponse(
        open_positions=summary.open_positions,
        partial_positions=summary.partial_positions,
        closed_positions=summary.closed_positions,
        long_positions=summary.long_positions,
        short_positions=summary.short_positions,
        total_invested_value=float(round(summary.total_invested_value, 2)),
        total_realized_profit=float(round(summary.total_realized_profit, 2)),
        total_realized_profit_percentage=float(round(summary.total_realized_profit_percentage, 2)),
    )


@operations_router.get("", response_model=List[OperationResponse])
async def list_operations(
    user_id: str,
    include_hidden: bool = False,
    db: AsyncSession = Depends(get_db)
):
    """Operations of a user; interim results hidden by a final exit are excluded by default"""
    operations = await OperationRepository(db).list_for_user(user_id, include_hidden=include_hidden)
    return [
        OperationResponse(
            id=op.id,
            asset_code=op.asset_code,
            side=op.side.value,
            trade_type=op.trade_type.value,
            status=op.status.value,
            entry_date=op.entry_date,
            exit_date=op.exit_date,
            quantity=op.quantity,
            entry_unit_price=float(op.entry_unit_price),
            entry_total_value=float(op.entry_total_value),
            exit_unit_price=float(op.exit_unit_price) if op.exit_unit_price is not None else None,
            exit_total_value=float(op.exit_total_value) if op.exit_total_value is not None else None,
            profit_loss=float(round(op.profit_loss, 2)),
            profit_loss_percentage=float(round(op.profit_loss_percentage, 2)),
        )
        for op in operations
    ]
