"""
Domain Models - Entities
Pure domain objects with no infrastructure dependencies

Durable records are immutable; variants are produced with
dataclasses.replace() instead of in-place mutation.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class Side(str, Enum):
    """Transaction side of a line item or operation"""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class TradeType(str, Enum):
    """Holding horizon of a trade"""
    DAY = "DAY"
    SWING = "SWING"


class OperationStatus(str, Enum):
    """User-visible status of an operation"""
    ACTIVE = "ACTIVE"
    WINNER = "WINNER"
    LOSER = "LOSER"
    BREAKEVEN = "BREAKEVEN"
    HIDDEN = "HIDDEN"


class PositionStatus(str, Enum):
    """Lifecycle of a position: OPEN -> PARTIAL -> CLOSED"""
    OPEN = "OPEN"
    PARTIAL = "PARTIAL"
    CLOSED = "CLOSED"


class GroupStatus(str, Enum):
    """Lifecycle of an operation group"""
    OPEN = "OPEN"
    PARTIALLY_CLOSED = "PARTIALLY_CLOSED"
    CLOSED = "CLOSED"


class OperationRole(str, Enum):
    """Role of an operation inside its group"""
    ORIGINAL = "ORIGINAL"
    NEW_ENTRY = "NEW_ENTRY"
    PARTIAL_EXIT = "PARTIAL_EXIT"
    CONSOLIDATED_RESULT = "CONSOLIDATED_RESULT"


class MappingType(str, Enum):
    """How a line item affected the operation it maps to"""
    NEW_OPERATION = "NEW_OPERATION"
    EXISTING_OPERATION_EXIT = "EXISTING_OPERATION_EXIT"
    DAY_TRADE_ENTRY = "DAY_TRADE_ENTRY"
    DAY_TRADE_EXIT = "DAY_TRADE_EXIT"


class InvoiceProcessingStatus(str, Enum):
    """Processing state of an invoice"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


class ExitStrategy(str, Enum):
    """Lot consumption strategy"""
    FIFO = "FIFO"


_SIDE_CODES = {
    "C": Side.BUY,
    "COMPRA": Side.BUY,
    "BUY": Side.BUY,
    "V": Side.SELL,
    "VENDA": Side.SELL,
    "SELL": Side.SELL,
}


def parse_side(code: Optional[str]) -> Optional[Side]:
    """Map a broker side code (C/V, COMPRA/VENDA, BUY/SELL) to a Side"""
    if not code:
        return None
    return _SIDE_CODES.get(code.strip().upper())


@dataclass(frozen=True)
class Invoice:
    """Brokerage trade confirmation header - Immutable"""
    invoice_number: str
    trading_date: date
    brokerage: str
    user_id: str
    settlement_date: Optional[date] = None
    processing_status: InvoiceProcessingStatus = InvoiceProcessingStatus.PENDING
    processing_attempts: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def was_processed(self) -> bool:
        return self.processing_status not in (
            InvoiceProcessingStatus.PENDING,
            InvoiceProcessingStatus.PROCESSING,
        )


@dataclass(frozen=True)
class LineItem:
    """
    One extracted trade line of an invoice - Immutable

    No validation on construction: extracted rows may be malformed and
    are judged by the detector and the validation suite instead.
    """
    sequence_number: int
    asset_code: Optional[str]
    operation_type: Optional[str]
    quantity: Optional[int]
    unit_price: Optional[Decimal]
    total_value: Optional[Decimal]
    trade_date: Optional[date] = None
    is_day_trade: bool = False
    observations: Optional[str] = None
    market_type: Optional[str] = None
    invoice_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def side(self) -> Optional[Side]:
        return parse_side(self.operation_type)


@dataclass(frozen=True)
class Operation:
    """Durable user-visible trade record (entry or exit) - Immutable"""
    user_id: str
    asset_code: str
    side: Side
    trade_type: TradeType
    status: OperationStatus
    entry_date: date
    quantity: int
    entry_unit_price: Decimal
    entry_total_value: Decimal
    exit_date: Optional[date] = None
    exit_unit_price: Optional[Decimal] = None
    exit_total_value: Optional[Decimal] = None
    profit_loss: Decimal = Decimal("0")
    profit_loss_percentage: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError("Operation quantity must be positive")
        if not self.asset_code:
            raise ValueError("Operation asset code cannot be empty")

    @property
    def is_exit(self) -> bool:
        return self.exit_date is not None

    @property
    def trade_date(self) -> date:
        """Date the operation happened on (exit date for exits)"""
        return self.exit_date or self.entry_date

    @property
    def unit_price(self) -> Decimal:
        """Price of the side this operation records"""
        if self.exit_unit_price is not None:
            return self.exit_unit_price
        return self.entry_unit_price


@dataclass(frozen=True)
class Position:
    """Durable aggregate per (user, instrument) - Immutable snapshot"""
    user_id: str
    asset_code: str
    direction: Side
    status: PositionStatus
    open_date: date
    total_quantity: int
    remaining_quantity: int
    average_price: Decimal
    total_realized_profit: Decimal = Decimal("0")
    total_realized_profit_percentage: Decimal = Decimal("0")
    close_date: Optional[date] = None
    group_id: Optional[int] = None
    id: Optional[int] = None

    def __post_init__(self):
        if self.remaining_quantity < 0:
            raise ValueError("Position remaining quantity cannot be negative")
        if self.remaining_quantity > self.total_quantity:
            raise ValueError("Position remaining quantity exceeds total quantity")

    @property
    def is_closed(self) -> bool:
        return self.status == PositionStatus.CLOSED


@dataclass(frozen=True)
class EntryLot:
    """One batch entered at a specific date and price - Immutable snapshot"""
    position_id: int
    entry_date: date
    quantity: int
    remaining_quantity: int
    unit_price: Decimal
    sequence_number: int
    is_fully_consumed: bool = False
    operation_id: Optional[int] = None
    id: Optional[int] = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise ValueError("Lot quantity must be positive")
        if self.remaining_quantity < 0 or self.remaining_quantity > self.quantity:
            raise ValueError(
                f"Lot remaining quantity {self.remaining_quantity} outside [0, {self.quantity}]"
            )

    @property
    def total_value(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class ExitRecord:
    """One lot consumption event - write-once"""
    entry_lot_id: int
    exit_operation_id: int
    exit_date: date
    quantity: int
    entry_unit_price: Decimal
    exit_unit_price: Decimal
    profit_loss: Decimal
    profit_loss_percentage: Decimal
    trade_type: TradeType
    applied_strategy: ExitStrategy = ExitStrategy.FIFO
    id: Optional[int] = None


@dataclass(frozen=True)
class OperationGroup:
    """All operations of one logical round trip - Immutable snapshot"""
    user_id: str
    asset_code: str
    status: GroupStatus
    total_quantity: int
    closed_quantity: int
    remaining_quantity: int
    total_profit: Decimal = Decimal("0")
    average_exit_price: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        if self.closed_quantity + self.remaining_quantity != self.total_quantity:
            raise ValueError("Group closed + remaining quantity must equal total quantity")


@dataclass(frozen=True)
class OperationGroupItem:
    """Ordered membership of an operation in a group"""
    group_id: int
    operation_id: int
    role: OperationRole
    sequence_number: int
    id: Optional[int] = None


@dataclass(frozen=True)
class SourceMapping:
    """Audit link from a line item to the operation it produced - write-once"""
    operation_id: int
    invoice_id: int
    line_item_id: int
    mapping_type: MappingType
    processing_sequence: int
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None
