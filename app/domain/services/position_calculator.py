"""
POSITION CALCULATOR
Pure lot arithmetic: weighted averages, FIFO consumption plans, profit/loss

RULES:
❌ No persistence
✅ Decimal everywhere, explicit precision
✅ Lots consumed oldest first (entry date, then sequence number)
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from app.domain.errors import LotAccountingError
from app.domain.models import (
    EntryLot,
    OperationStatus,
    Position,
    PositionStatus,
    PositionSummary,
    Side,
    TradeType,
)

PRICE_PRECISION = Decimal("0.000001")
PERCENT_PRECISION = Decimal("0.0001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LotSlice:
    """Planned consumption of part of one lot"""
    lot: EntryLot
    quantity: int
    trade_type: TradeType
    entry_value: Decimal
    exit_value: Decimal
    profit_loss: Decimal
    profit_loss_percentage: Decimal

    @property
    def remaining_after(self) -> int:
        return self.lot.remaining_quantity - self.quantity


def unit_price(total: Decimal, quantity: int) -> Decimal:
    if quantity <= 0:
        return ZERO
    return (total / quantity).quantize(PRICE_PRECISION, rounding=ROUND_HALF_UP)


def result_status(profit_loss: Decimal) -> OperationStatus:
    """WINNER above zero, LOSER below, BREAKEVEN at exactly zero"""
    if profit_loss > 0:
        return OperationStatus.WINNER
    if profit_loss < 0:
        return OperationStatus.LOSER
    return OperationStatus.BREAKEVEN


class PositionCalculator:
    """Lot-level calculations used by the exit consolidation engine"""

    def weighted_average_price(self, lots: Iterable[EntryLot]) -> Decimal:
        """Quantity-weighted mean unit price of the remaining lot quantities"""
        quantity = 0
        weighted = ZERO
        for lot in lots:
            if lot.remaining_quantity > 0:
                quantity += lot.remaining_quantity
                weighted += lot.unit_price * lot.remaining_quantity
        return unit_price(weighted, quantity)

    def profit_loss(self, entry_value: Decimal, exit_value: Decimal, direction: Side) -> Decimal:
        """Result measured in the position's direction (short positions gain on a lower exit)"""
        if direction == Side.BUY:
            return exit_value - entry_value
        return entry_value - exit_value

    def percentage(self, profit_loss: Decimal, basis: Decimal) -> Decimal:
        if basis == 0:
            return ZERO
        return (profit_loss / basis * HUNDRED).quantize(PERCENT_PRECISION, rounding=ROUND_HALF_UP)

    def fifo_order(self, lots: Iterable[EntryLot]) -> list[EntryLot]:
        open_lots = [lot for lot in lots if lot.remaining_quantity > 0]
        return sorted(open_lots, key=lambda lot: (lot.entry_date, lot.sequence_number))

    def plan_fifo_exit(
        self,
        lots: Sequence[EntryLot],
        quantity: int,
        exit_price: Decimal,
        exit_date: date,
        direction: Side,
    ) -> list[LotSlice]:
        """
        Plan the consumption of ``quantity`` units from the oldest lots

        Raises:
            LotAccountingError: If the open lots hold less than ``quantity``
        """
        ordered = self.fifo_order(lots)
        available = sum(lot.remaining_quantity for lot in ordered)
        if quantity <= 0:
            raise LotAccountingError("Exit quantity must be positive", quantity=quantity)
        if quantity > available:
            raise LotAccountingError(
                f"Exit quantity {quantity} exceeds open quantity {available}",
                quantity=quantity,
                available=available,
            )

        slices = []
        to_consume = quantity
        for lot in ordered:
            if to_consume == 0:
                break
            take = min(lot.remaining_quantity, to_consume)
            entry_value = lot.unit_price * take
            exit_value = exit_price * take
            profit = self.profit_loss(entry_value, exit_value, direction)
            slices.append(LotSlice(
                lot=lot,
                quantity=take,
                trade_type=TradeType.DAY if lot.entry_date == exit_date else TradeType.SWING,
                entry_value=entry_value,
                exit_value=exit_value,
                profit_loss=profit,
                profit_loss_percentage=self.percentage(profit, entry_value),
            ))
            to_consume -= take
        return slices

    def consumed_basis(self, lots: Iterable[EntryLot]) -> Decimal:
        """Entry value of everything already consumed from the lots"""
        return sum(
            (lot.unit_price * (lot.quantity - lot.remaining_quantity) for lot in lots),
            ZERO,
        )

    def summarize(self, positions: Sequence[Position]) -> PositionSummary:
        invested = sum(
            (p.average_price * p.remaining_quantity for p in positions if not p.is_closed),
            ZERO,
        )
        realized = sum((p.total_realized_profit for p in positions), ZERO)

        weight = ZERO
        weighted_pct = ZERO
        for position in positions:
            if position.total_realized_profit != 0:
                absolute = abs(position.total_realized_profit)
                weight += absolute
                weighted_pct += absolute * position.total_realized_profit_percentage
        average_pct = (
            (weighted_pct / weight).quantize(PERCENT_PRECISION, rounding=ROUND_HALF_UP)
            if weight > 0 else ZERO
        )

        return PositionSummary(
            open_positions=sum(1 for p in positions if p.status == PositionStatus.OPEN),
            partial_positions=sum(1 for p in positions if p.status == PositionStatus.PARTIAL),
            closed_positions=sum(1 for p in positions if p.status == PositionStatus.CLOSED),
            total_invested_value=invested,
            total_realized_profit=realized,
            total_realized_profit_percentage=average_pct,
            long_positions=sum(1 for p in positions if p.direction == Side.BUY),
            short_positions=sum(1 for p in positions if p.direction == Side.SELL),
        )
