"""
Domain Models - Pipeline
Ephemeral values produced by detection, classification and consolidation
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from .entities import Invoice, LineItem, Side, TradeType


@dataclass(frozen=True)
class InvoiceBatchEntry:
    """An invoice with its explicitly fetched line items"""
    invoice: Invoice
    items: tuple[LineItem, ...]


@dataclass(frozen=True)
class DetectedOperation:
    """Candidate operation derived from one line item"""
    user_id: str
    invoice_id: Optional[int]
    asset_code: str
    side: Side
    quantity: int
    unit_price: Decimal
    total_value: Decimal
    trade_date: Optional[date]
    confidence: Decimal
    reason: str
    source_items: tuple[LineItem, ...]
    is_day_trade: bool = False
    notes: str = ""

    def __post_init__(self):
        if not Decimal("0") <= self.confidence <= Decimal("1"):
            raise ValueError("Detection confidence must be within [0, 1]")


@dataclass(frozen=True)
class ClassifiedOperation:
    """A detected operation with its trade type"""
    detected: DetectedOperation
    trade_type: TradeType
    confidence: Decimal
    reason: str

    @property
    def asset_code(self) -> str:
        return self.detected.asset_code

    @property
    def side(self) -> Side:
        return self.detected.side

    @property
    def trade_date(self) -> Optional[date]:
        return self.detected.trade_date

    @property
    def quantity(self) -> int:
        return self.detected.quantity

    @property
    def total_value(self) -> Decimal:
        return self.detected.total_value

    @property
    def grouping_key(self) -> tuple:
        return (self.asset_code, self.side, self.trade_type, self.trade_date)


@dataclass(frozen=True)
class ConsolidatedOperation:
    """Merge of classified operations sharing (asset, side, trade type, date)"""
    user_id: str
    asset_code: str
    side: Side
    trade_type: TradeType
    trade_date: Optional[date]
    quantity: int
    unit_price: Decimal
    total_value: Decimal
    confidence: Decimal
    sources: tuple[ClassifiedOperation, ...]
    confirmed: bool
    ready_for_creation: bool
    reason: str
    notes: str = ""

    @property
    def source_items(self) -> tuple[LineItem, ...]:
        return tuple(item for source in self.sources for item in source.detected.source_items)

    @property
    def invoice_ids(self) -> list[int]:
        return sorted({
            source.detected.invoice_id
            for source in self.sources
            if source.detected.invoice_id is not None
        })

    @property
    def ordering_key(self) -> tuple:
        """Chronological order of the earliest contributing line item"""
        first = min(
            self.source_items,
            key=lambda item: (item.invoice_id or 0, item.sequence_number),
        )
        return (self.trade_date or date.min, first.invoice_id or 0, first.sequence_number)


@dataclass(frozen=True)
class TradePattern:
    """Opposite-side items of one asset traded on the same date"""
    trade_type: TradeType
    asset_code: str
    trade_date: date
    buy_quantity: int
    sell_quantity: int
    line_item_ids: frozenset[int]

    @property
    def matched_quantity(self) -> int:
        return min(self.buy_quantity, self.sell_quantity)


@dataclass
class DetectionResult:
    """Outcome of the detect -> classify -> consolidate chain"""
    success: bool
    total_invoices: int = 0
    total_items: int = 0
    detected: list[DetectedOperation] = field(default_factory=list)
    classified: list[ClassifiedOperation] = field(default_factory=list)
    consolidated: list[ConsolidatedOperation] = field(default_factory=list)
    patterns: list[TradePattern] = field(default_factory=list)
    error_message: Optional[str] = None
    processing_time_ms: int = 0

    @property
    def detection_rate(self) -> float:
        """Share of line items that produced a detected operation"""
        if self.total_items == 0:
            return 0.0
        return len(self.detected) / self.total_items * 100

    @property
    def consolidation_rate(self) -> float:
        if not self.classified:
            return 0.0
        return len(self.consolidated) / len(self.classified) * 100

    @property
    def type_distribution(self) -> dict[str, int]:
        distribution: dict[str, int] = {}
        for operation in self.consolidated:
            distribution[operation.side.value] = distribution.get(operation.side.value, 0) + 1
        return distribution
