"""
EXIT CONSOLIDATION ENGINE - ASYNC VERSION
Lot accounting for positions

RESPONSIBILITIES:
- Open positions and append entry lots
- Consume lots FIFO on exits, one exit record per (lot, exit)
- Re-average the cost basis over the remaining lots
- Book partial exits as slice results
- Re-express a fully closed round trip as one terminal operation

RULES:
❌ No line-item or invoice knowledge
✅ sum(lot.remaining) == position.remaining after every call
✅ Position status only moves OPEN -> PARTIAL -> CLOSED
✅ Terminal result = total received - total paid, never a sum of slice percentages
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Optional

from app.domain.errors import LotAccountingError
from app.domain.models import (
    EntryLot,
    ExitRecord,
    ExitStrategy,
    GroupStatus,
    Operation,
    OperationGroup,
    OperationRole,
    OperationStatus,
    Position,
    PositionStatus,
    Side,
    TradeType,
)
from app.domain.services.position_calculator import (
    LotSlice,
    PositionCalculator,
    result_status,
    unit_price,
)
from app.domain.services.protocols import (
    EntryLotRepository,
    ExitRecordRepository,
    OperationGroupRepository,
    OperationRepository,
    PositionRepository,
)
from app.utils.time import now_local_naive

logger = logging.getLogger(__name__)

ENTRY_ROLES = (OperationRole.ORIGINAL, OperationRole.NEW_ENTRY)


@dataclass(frozen=True)
class Fill:
    """A consolidated trade ready to be applied to a position"""
    user_id: str
    asset_code: str
    side: Side
    trade_type: TradeType
    trade_date: date
    quantity: int
    total_value: Decimal

    @property
    def price(self) -> Decimal:
        return unit_price(self.total_value, self.quantity)


@dataclass
class LotOutcome:
    """What one engine call produced"""
    position: Position
    operation: Operation
    group: OperationGroup
    role: OperationRole
    lots: list[EntryLot] = field(default_factory=list)
    exit_records: list[ExitRecord] = field(default_factory=list)

    @property
    def closed(self) -> bool:
        return self.position.status == PositionStatus.CLOSED


class ExitConsolidationEngine:
    """
    Exit Consolidation Engine - ASYNC VERSION
    Single writer of positions, lots, exit records and operation groups
    """

    def __init__(
        self,
        position_repo: PositionRepository,
        entry_lot_repo: EntryLotRepository,
        exit_record_repo: ExitRecordRepository,
        operation_repo: OperationRepository,
        group_repo: OperationGroupRepository,
        calculator: Optional[PositionCalculator] = None,
    ):
        """Initialize with repository dependencies"""
        self.position_repo = position_repo
        self.entry_lot_repo = entry_lot_repo
        self.exit_record_repo = exit_record_repo
        self.operation_repo = operation_repo
        self.group_repo = group_repo
        self.calculator = calculator or PositionCalculator()

    # ======================
    # Entries
    # ======================

    async def open_position(self, fill: Fill) -> LotOutcome:
        """
        Open a new position with its original operation and first lot

        Args:
            fill: Entry trade; its side becomes the position direction

        Returns:
            LotOutcome with role ORIGINAL
        """
        operation = await self.operation_repo.create(self._entry_operation(fill))

        group = await self.group_repo.create(OperationGroup(
            user_id=fill.user_id,
            asset_code=fill.asset_code,
            status=GroupStatus.OPEN,
            total_quantity=fill.quantity,
            closed_quantity=0,
            remaining_quantity=fill.quantity,
            created_at=now_local_naive(),
        ))
        await self.group_repo.add_item(group.id, operation.id, OperationRole.ORIGINAL)

        position = await self.position_repo.create(Position(
            user_id=fill.user_id,
            asset_code=fill.asset_code,
            direction=fill.side,
            status=PositionStatus.OPEN,
            open_date=fill.trade_date,
            total_quantity=fill.quantity,
            remaining_quantity=fill.quantity,
            average_price=fill.price,
            group_id=group.id,
        ))

        lot = await self.entry_lot_repo.create(EntryLot(
            position_id=position.id,
            entry_date=fill.trade_date,
            quantity=fill.quantity,
            remaining_quantity=fill.quantity,
            unit_price=fill.price,
            sequence_number=1,
            operation_id=operation.id,
        ))

        logger.info(
            "📈 Opened %s position %s in %s: %d @ %s",
            fill.side.value, position.id, fill.asset_code, fill.quantity, fill.price,
        )
        return LotOutcome(
            position=position,
            operation=operation,
            group=group,
            role=OperationRole.ORIGINAL,
            lots=[lot],
        )

    async def add_entry(self, position: Position, fill: Fill) -> LotOutcome:
        """
        Append a lot to an open position and re-average its cost basis

        Raises:
            LotAccountingError: If the position is closed or the side does not match
        """
        if position.is_closed:
            raise LotAccountingError(f"Position {position.id} is closed", position_id=position.id)
        if fill.side != position.direction:
            raise LotAccountingError(
                f"Entry side {fill.side.value} does not match position direction "
                f"{position.direction.value}",
                position_id=position.id,
            )

        lots = await self.entry_lot_repo.list_for_position(position.id)
        operation = await self.operation_repo.create(self._entry_operation(fill))
        group = await self._load_group(position)
        await self.group_repo.add_item(group.id, operation.id, OperationRole.NEW_ENTRY)

        lot = await self.entry_lot_repo.create(EntryLot(
            position_id=position.id,
            entry_date=fill.trade_date,
            quantity=fill.quantity,
            remaining_quantity=fill.quantity,
            unit_price=fill.price,
            sequence_number=max((l.sequence_number for l in lots), default=0) + 1,
            operation_id=operation.id,
        ))
        lots.append(lot)

        position = await self.position_repo.update(replace(
            position,
            total_quantity=position.total_quantity + fill.quantity,
            remaining_quantity=position.remaining_quantity + fill.quantity,
            average_price=self.calculator.weighted_average_price(lots),
        ))
        group = await self.group_repo.update(replace(
            group,
            total_quantity=group.total_quantity + fill.quantity,
            remaining_quantity=group.remaining_quantity + fill.quantity,
        ))

        logger.info(
            "➕ Added lot %d to position %s: %d @ %s (avg %s)",
            lot.sequence_number, position.id, fill.quantity, fill.price, position.average_price,
        )
        return LotOutcome(
            position=position,
            operation=operation,
            group=group,
            role=OperationRole.NEW_ENTRY,
            lots=lots,
        )

    # ======================
    # Exits
    # ======================

    async def process_exit(self, position: Position, fill: Fill) -> LotOutcome:
        """
        Consume lots FIFO for an exit and book its result

        A partial exit books a slice result; the final exit books one terminal
        operation for the whole round trip and hides the interim results.

        Raises:
            LotAccountingError: On a closed position, wrong side or excess quantity
        """
        if position.is_closed:
            raise LotAccountingError(f"Position {position.id} is closed", position_id=position.id)
        if fill.side != position.direction.opposite:
            raise LotAccountingError(
                f"Exit side {fill.side.value} cannot close a {position.direction.value} position",
                position_id=position.id,
            )

        lots = await self.entry_lot_repo.list_for_position(position.id)
        slices = self.calculator.plan_fifo_exit(
            lots, fill.quantity, fill.price, fill.trade_date, position.direction
        )
        group = await self._load_group(position)
        remaining = position.remaining_quantity - fill.quantity

        if remaining > 0:
            operation, group = await self._book_partial_exit(position, group, fill, slices)
        else:
            operation, group = await self._book_final_exit(position, group, fill)

        exit_records = []
        for piece in slices:
            exit_records.append(await self.exit_record_repo.create(ExitRecord(
                entry_lot_id=piece.lot.id,
                exit_operation_id=operation.id,
                exit_date=fill.trade_date,
                quantity=piece.quantity,
                entry_unit_price=piece.lot.unit_price,
                exit_unit_price=fill.price,
                profit_loss=piece.profit_loss,
                profit_loss_percentage=piece.profit_loss_percentage,
                trade_type=piece.trade_type,
                applied_strategy=ExitStrategy.FIFO,
            )))

        consumed = {piece.lot.id: piece for piece in slices}
        updated_lots = []
        for lot in lots:
            piece = consumed.get(lot.id)
            if piece is not None:
                lot = await self.entry_lot_repo.update(replace(
                    lot,
                    remaining_quantity=piece.remaining_after,
                    is_fully_consumed=piece.remaining_after == 0,
                ))
            updated_lots.append(lot)

        position = await self.position_repo.update(
            self._position_after_exit(position, updated_lots, fill, operation, remaining)
        )

        logger.info(
            "📉 Exit %d @ %s on position %s: remaining %d, status %s, result %s",
            fill.quantity, fill.price, position.id, position.remaining_quantity,
            position.status.value, operation.profit_loss,
        )
        return LotOutcome(
            position=position,
            operation=operation,
            group=group,
            role=OperationRole.CONSOLIDATED_RESULT,
            lots=updated_lots,
            exit_records=exit_records,
        )

    async def _book_partial_exit(
        self,
        position: Position,
        group: OperationGroup,
        fill: Fill,
        slices: list[LotSlice],
    ) -> tuple[Operation, OperationGroup]:
        entry_value = sum((piece.entry_value for piece in slices), Decimal("0"))
        profit = self.calculator.profit_loss(entry_value, fill.total_value, position.direction)
        all_day = all(piece.trade_type == TradeType.DAY for piece in slices)

        operation = await self.operation_repo.create(Operation(
            user_id=position.user_id,
            asset_code=position.asset_code,
            side=fill.side,
            trade_type=TradeType.DAY if all_day else TradeType.SWING,
            status=result_status(profit),
            entry_date=min(piece.lot.entry_date for piece in slices),
            exit_date=fill.trade_date,
            quantity=fill.quantity,
            entry_unit_price=unit_price(entry_value, fill.quantity),
            entry_total_value=entry_value,
            exit_unit_price=fill.price,
            exit_total_value=fill.total_value,
            profit_loss=profit,
            profit_loss_percentage=self.calculator.percentage(profit, entry_value),
            created_at=now_local_naive(),
        ))
        await self.group_repo.add_item(group.id, operation.id, OperationRole.CONSOLIDATED_RESULT)

        closed = group.closed_quantity + fill.quantity
        previous_proceeds = (group.average_exit_price or Decimal("0")) * group.closed_quantity
        group = await self.group_repo.update(replace(
            group,
            status=GroupStatus.PARTIALLY_CLOSED,
            closed_quantity=closed,
            remaining_quantity=group.remaining_quantity - fill.quantity,
            total_profit=group.total_profit + profit,
            average_exit_price=unit_price(previous_proceeds + fill.total_value, closed),
        ))
        return operation, group

    async def _book_final_exit(
        self,
        position: Position,
        group: OperationGroup,
        fill: Fill,
    ) -> tuple[Operation, OperationGroup]:
        items = await self.group_repo.list_items(group.id)
        roles = {item.operation_id: item.role for item in items}
        members = await self.operation_repo.list_by_ids(list(roles))

        entries = [op for op in members if roles[op.id] in ENTRY_ROLES]
        prior_exits = [
            op for op in members
            if roles[op.id] not in ENTRY_ROLES and op.status != OperationStatus.HIDDEN
        ]

        if not entries:
            raise LotAccountingError(
                f"Group {group.id} has no entry operations", group_id=group.id
            )

        investment = sum((op.entry_total_value for op in entries), Decimal("0"))
        quantity = sum(op.quantity for op in entries)
        proceeds = sum(
            (op.exit_total_value or Decimal("0") for op in prior_exits), Decimal("0")
        ) + fill.total_value
        profit = self.calculator.profit_loss(investment, proceeds, position.direction)

        terminal = await self.operation_repo.create(Operation(
            user_id=position.user_id,
            asset_code=position.asset_code,
            side=fill.side,
            trade_type=TradeType.DAY if position.open_date == fill.trade_date else TradeType.SWING,
            status=result_status(profit),
            entry_date=position.open_date,
            exit_date=fill.trade_date,
            quantity=quantity,
            entry_unit_price=unit_price(investment, quantity),
            entry_total_value=investment,
            exit_unit_price=unit_price(proceeds, quantity),
            exit_total_value=proceeds,
            profit_loss=profit,
            profit_loss_percentage=self.calculator.percentage(profit, investment),
            created_at=now_local_naive(),
        ))
        await self.group_repo.add_item(group.id, terminal.id, OperationRole.CONSOLIDATED_RESULT)

        for op in members:
            if roles[op.id] != OperationRole.ORIGINAL and op.status != OperationStatus.HIDDEN:
                await self.operation_repo.update(replace(op, status=OperationStatus.HIDDEN))

        group = await self.group_repo.update(replace(
            group,
            status=GroupStatus.CLOSED,
            closed_quantity=group.total_quantity,
            remaining_quantity=0,
            total_profit=profit,
            average_exit_price=unit_price(proceeds, quantity),
        ))

        logger.info(
            "🏁 Round trip closed for %s: invested %s, received %s, result %s (%s%%)",
            position.asset_code, investment, proceeds, profit, terminal.profit_loss_percentage,
        )
        return terminal, group

    def _position_after_exit(
        self,
        position: Position,
        lots: list[EntryLot],
        fill: Fill,
        operation: Operation,
        remaining: int,
    ) -> Position:
        if remaining == 0:
            return replace(
                position,
                status=PositionStatus.CLOSED,
                remaining_quantity=0,
                close_date=fill.trade_date,
                total_realized_profit=operation.profit_loss,
                total_realized_profit_percentage=operation.profit_loss_percentage,
            )

        realized = position.total_realized_profit + operation.profit_loss
        return replace(
            position,
            status=PositionStatus.PARTIAL,
            remaining_quantity=remaining,
            average_price=self.calculator.weighted_average_price(lots),
            total_realized_profit=realized,
            total_realized_profit_percentage=self.calculator.percentage(
                realized, self.calculator.consumed_basis(lots)
            ),
        )

    # ======================
    # Helpers
    # ======================

    async def _load_group(self, position: Position) -> OperationGroup:
        group = await self.group_repo.get(position.group_id) if position.group_id else None
        if group is None:
            raise LotAccountingError(
                f"Position {position.id} has no operation group", position_id=position.id
            )
        return group

    @staticmethod
    def _entry_operation(fill: Fill) -> Operation:
        return Operation(
            user_id=fill.user_id,
            asset_code=fill.asset_code,
            side=fill.side,
            trade_type=fill.trade_type,
            status=OperationStatus.ACTIVE,
            entry_date=fill.trade_date,
            quantity=fill.quantity,
            entry_unit_price=fill.price,
            entry_total_value=fill.total_value,
            created_at=now_local_naive(),
        )
