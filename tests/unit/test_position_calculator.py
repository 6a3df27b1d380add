import pytest
from datetime import date
from decimal import Decimal

from app.domain.errors import LotAccountingError
from app.domain.models import (
    EntryLot,
    OperationStatus,
    Position,
    PositionStatus,
    Side,
    TradeType,
)
from app.domain.services.position_calculator import (
    PositionCalculator,
    result_status,
    unit_price,
)


def _lot(lot_id, entry_date, quantity, price, remaining=None, seq=1):
    return EntryLot(
        position_id=1,
        entry_date=entry_date,
        quantity=quantity,
        remaining_quantity=quantity if remaining is None else remaining,
        unit_price=Decimal(price),
        sequence_number=seq,
        id=lot_id,
    )


def _position(status, direction=Side.BUY, remaining=100, avg="10", realized="0", pct="0"):
    return Position(
        user_id="user-1",
        asset_code="XYZ11",
        direction=direction,
        status=status,
        open_date=date(2025, 1, 2),
        total_quantity=100,
        remaining_quantity=remaining,
        average_price=Decimal(avg),
        total_realized_profit=Decimal(realized),
        total_realized_profit_percentage=Decimal(pct),
    )


@pytest.fixture()
def calculator():
    return PositionCalculator()


def test_unit_price_precision():
    assert unit_price(Decimal("312"), 300) == Decimal("1.040000")
    assert unit_price(Decimal("10"), 3) == Decimal("3.333333")
    assert unit_price(Decimal("10"), 0) == Decimal("0")


def test_result_status():
    assert result_status(Decimal("0.01")) == OperationStatus.WINNER
    assert result_status(Decimal("-0.01")) == OperationStatus.LOSER
    assert result_status(Decimal("0")) == OperationStatus.BREAKEVEN


def test_weighted_average_uses_remaining_quantities(calculator):
    lots = [
        _lot(1, date(2025, 1, 2), 100, "1.00"),
        _lot(2, date(2025, 1, 3), 200, "1.06", seq=2),
    ]
    assert calculator.weighted_average_price(lots) == Decimal("1.040000")

    lots[0] = _lot(1, date(2025, 1, 2), 100, "1.00", remaining=0)
    assert calculator.weighted_average_price(lots) == Decimal("1.060000")


def test_profit_loss_direction(calculator):
    assert calculator.profit_loss(Decimal("100"), Decimal("120"), Side.BUY) == Decimal("20")
    assert calculator.profit_loss(Decimal("100"), Decimal("120"), Side.SELL) == Decimal("-20")


def test_percentage_of_zero_basis(calculator):
    assert calculator.percentage(Decimal("5"), Decimal("0")) == Decimal("0")
    assert calculator.percentage(Decimal("52.50"), Decimal("77.25")) == Decimal("67.9612")


def test_fifo_plan_orders_by_date_then_sequence(calculator):
    lots = [
        _lot(3, date(2025, 1, 3), 50, "12.00", seq=3),
        _lot(2, date(2025, 1, 2), 50, "11.00", seq=2),
        _lot(1, date(2025, 1, 2), 50, "10.00", seq=1),
    ]

    slices = calculator.plan_fifo_exit(lots, 80, Decimal("13.00"), date(2025, 1, 2), Side.BUY)

    assert [piece.lot.id for piece in slices] == [1, 2]
    assert [piece.quantity for piece in slices] == [50, 30]
    assert slices[0].trade_type == TradeType.DAY
    assert slices[0].profit_loss == Decimal("150.00")
    assert slices[1].remaining_after == 20
    assert sum(piece.quantity for piece in slices) == 80


def test_fifo_plan_skips_consumed_lots(calculator):
    lots = [
        _lot(1, date(2025, 1, 2), 50, "10.00", remaining=0, seq=1),
        _lot(2, date(2025, 1, 3), 50, "11.00", seq=2),
    ]

    [piece] = calculator.plan_fifo_exit(lots, 10, Decimal("9.00"), date(2025, 1, 6), Side.BUY)

    assert piece.lot.id == 2
    assert piece.trade_type == TradeType.SWING
    assert piece.profit_loss == Decimal("-20.00")


def test_fifo_plan_rejects_excess_quantity(calculator):
    lots = [_lot(1, date(2025, 1, 2), 50, "10.00")]

    with pytest.raises(LotAccountingError) as exc_info:
        calculator.plan_fifo_exit(lots, 51, Decimal("9.00"), date(2025, 1, 6), Side.BUY)

    assert exc_info.value.context["available"] == 50


def test_consumed_basis(calculator):
    lots = [_lot(1, date(2025, 1, 2), 300, "1.03", remaining=225)]
    assert calculator.consumed_basis(lots) == Decimal("77.25")


def test_summarize(calculator):
    positions = [
        _position(PositionStatus.OPEN, remaining=100, avg="10"),
        _position(PositionStatus.PARTIAL, direction=Side.SELL, remaining=50, avg="20",
                  realized="100", pct="10"),
        _position(PositionStatus.CLOSED, remaining=0, realized="-300", pct="-30"),
    ]

    summary = calculator.summarize(positions)

    assert summary.open_positions == 1
    assert summary.partial_positions == 1
    assert summary.closed_positions == 1
    assert summary.total_invested_value == Decimal("2000")
    assert summary.total_realized_profit == Decimal("-200")
    assert summary.total_realized_profit_percentage == Decimal("-20.0000")
    assert summary.long_positions == 2
    assert summary.short_positions == 1
