"""
Position Repositories
Positions, entry lots and exit records
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional, List

from app.infrastructure.db.models import EntryLotModel, ExitRecordModel, PositionModel
from app.domain.models import (
    EntryLot,
    ExitRecord,
    ExitStrategy,
    Position,
    PositionStatus,
    Side,
    TradeType,
)


class PositionRepository:
    """Repository for Position"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def create(self, position: Position) -> Position:
        model = PositionModel(
            user_id=position.user_id,
            asset_code=position.asset_code,
            direction=position.direction,
            status=position.status,
            open_date=position.open_date,
            close_date=position.close_date,
            total_quantity=position.total_quantity,
            remaining_quantity=position.remaining_quantity,
            average_price=position.average_price,
            total_realized_profit=position.total_realized_profit,
            total_realized_profit_percentage=position.total_realized_profit_percentage,
            group_id=position.group_id,
        )
        self.session.add(model)
        await self.session.flush()

        return self._to_domain(model)

    async def update(self, position: Position) -> Position:
        model = await self.session.get(PositionModel, position.id)
        if model is None:
            raise ValueError(f"Position {position.id} not found")

        model.status = position.status
        model.close_date = position.close_date
        model.total_quantity = position.total_quantity
        model.remaining_quantity = position.remaining_quantity
        model.average_price = position.average_price
        model.total_realized_profit = position.total_realized_profit
        model.total_realized_profit_percentage = position.total_realized_profit_percentage
        await self.session.flush()

        return self._to_domain(model)

    async def get(self, position_id: int) -> Optional[Position]:
        model = await self.session.get(PositionModel, position_id)
        return self._to_domain(model) if model else None

    async def find_open(self, user_id: str, asset_code: str) -> Optional[Position]:
        """
        Get the non-closed position of a user in an asset

        Returns:
            Position (OPEN or PARTIAL) or None
        """
        result = await self.session.execute(
            select(PositionModel)
            .where(
                PositionModel.user_id == user_id,
                PositionModel.asset_code == asset_code,
                PositionModel.status != PositionStatus.CLOSED,
            )
            .order_by(PositionModel.open_date, PositionModel.id)
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_domain(model) if model else None

    async def list_for_user(self, user_id: str) -> List[Position]:
        result = await self.session.execute(
            select(PositionModel)
            .where(PositionModel.user_id == user_id)
            .order_by(PositionModel.open_date, PositionModel.id)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: PositionModel) -> Position:
        """Convert database model to domain entity"""
        return Position(
            id=model.id,
            user_id=model.user_id,
            asset_code=model.asset_code,
            direction=Side(model.direction.value),
            status=PositionStatus(model.status.value),
            open_date=model.open_date,
            close_date=model.close_date,
            total_quantity=model.total_quantity,
            remaining_quantity=model.remaining_quantity,
            average_price=model.average_price,
            total_realized_profit=model.total_realized_profit,
            total_realized_profit_percentage=model.total_realized_profit_percentage,
            group_id=model.group_id,
        )


class EntryLotRepository:
    """Repository for EntryLot"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def create(self, lot: EntryLot) -> EntryLot:
        model = EntryLotModel(
            position_id=lot.position_id,
            operation_id=lot.operation_id,
            entry_date=lot.entry_date,
            quantity=lot.quantity,
            remaining_quantity=lot.remaining_quantity,
            unit_price=lot.unit_price,
            sequence_number=lot.sequence_number,
            is_fully_consumed=lot.is_fully_consumed,
        )
        self.session.add(model)
        await self.session.flush()

        return self._to_domain(model)

    async def update(self, lot: EntryLot) -> EntryLot:
        """Only consumption state changes after creation"""
        model = await self.session.get(EntryLotModel, lot.id)
        if model is None:
            raise ValueError(f"Entry lot {lot.id} not found")

        model.remaining_quantity = lot.remaining_quantity
        model.is_fully_consumed = lot.is_fully_consumed
        await self.session.flush()

        return self._to_domain(model)

    async def list_for_position(self, position_id: int) -> List[EntryLot]:
        result = await self.session.execute(
            select(EntryLotModel)
            .where(EntryLotModel.position_id == position_id)
            .order_by(EntryLotModel.entry_date, EntryLotModel.sequence_number)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: EntryLotModel) -> EntryLot:
        return EntryLot(
            id=model.id,
            position_id=model.position_id,
            operation_id=model.operation_id,
            entry_date=model.entry_date,
            quantity=model.quantity,
            remaining_quantity=model.remaining_quantity,
            unit_price=model.unit_price,
            sequence_number=model.sequence_number,
            is_fully_consumed=model.is_fully_consumed,
        )


class ExitRecordRepository:
    """Repository for ExitRecord - insert only"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def create(self, record: ExitRecord) -> ExitRecord:
        model = ExitRecordModel(
            entry_lot_id=record.entry_lot_id,
            exit_operation_id=record.exit_operation_id,
            exit_date=record.exit_date,
            quantity=record.quantity,
            entry_unit_price=record.entry_unit_price,
            exit_unit_price=record.exit_unit_price,
            profit_loss=record.profit_loss,
            profit_loss_percentage=record.profit_loss_percentage,
            trade_type=record.trade_type,
            applied_strategy=record.applied_strategy,
        )
        self.session.add(model)
        await self.session.flush()

        return self._to_domain(model)

    async def list_for_lots(self, lot_ids: List[int]) -> List[ExitRecord]:
        if not lot_ids:
            return []
        result = await self.session.execute(
            select(ExitRecordModel)
            .where(ExitRecordModel.entry_lot_id.in_(lot_ids))
            .order_by(ExitRecordModel.exit_date, ExitRecordModel.id)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: ExitRecordModel) -> ExitRecord:
        return ExitRecord(
            id=model.id,
            entry_lot_id=model.entry_lot_id,
            exit_operation_id=model.exit_operation_id,
            exit_date=model.exit_date,
            quantity=model.quantity,
            entry_unit_price=model.entry_unit_price,
            exit_unit_price=model.exit_unit_price,
            profit_loss=model.profit_loss,
            profit_loss_percentage=model.profit_loss_percentage,
            trade_type=TradeType(model.trade_type.value),
            applied_strategy=ExitStrategy(model.applied_strategy.value),
        )
