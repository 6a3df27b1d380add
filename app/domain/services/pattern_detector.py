"""
PATTERN DETECTOR
Turns extracted line items into detected operations with a confidence score

RULES:
❌ No persistence, no side effects
❌ Never raises on a malformed item (skipped and logged)
✅ One detected operation per structurally valid item
✅ Additional cross-item patterns come from pluggable hooks
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from app.domain.models import (
    DetectedOperation,
    LineItem,
    Side,
    TradePattern,
    TradeType,
)

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = Decimal("0.5")
PRICE_BONUS = Decimal("0.2")
QUANTITY_BONUS = Decimal("0.2")
ASSET_BONUS = Decimal("0.1")
DATE_BONUS = Decimal("0.1")
DAY_TRADE_FLAG_BONUS = Decimal("0.1")
MAX_CONFIDENCE = Decimal("1.0")


class PatternHook(Protocol):
    """Extension point scanning the items of one invoice for trade patterns"""

    def find_patterns(self, items: Sequence[LineItem]) -> list[TradePattern]:
        ...


class SameDayRoundTripHook:
    """Pairs BUY and SELL items of the same asset traded on the same date"""

    def find_patterns(self, items: Sequence[LineItem]) -> list[TradePattern]:
        buckets: dict[tuple[str, date], list[LineItem]] = defaultdict(list)
        for item in items:
            if item.trade_date is None or not is_structurally_valid(item):
                continue
            buckets[(item.asset_code.strip().upper(), item.trade_date)].append(item)

        patterns = []
        for (asset_code, trade_date), bucket in buckets.items():
            buy_qty = sum(i.quantity for i in bucket if i.side == Side.BUY)
            sell_qty = sum(i.quantity for i in bucket if i.side == Side.SELL)
            if buy_qty == 0 or sell_qty == 0:
                continue
            patterns.append(TradePattern(
                trade_type=TradeType.DAY,
                asset_code=asset_code,
                trade_date=trade_date,
                buy_quantity=buy_qty,
                sell_quantity=sell_qty,
                line_item_ids=frozenset(i.id for i in bucket if i.id is not None),
            ))
        return patterns


def is_structurally_valid(item: LineItem) -> bool:
    """Asset code present, BUY/SELL side, positive quantity and price"""
    if not item.asset_code or not item.asset_code.strip():
        return False
    if item.side is None:
        return False
    if item.quantity is None or item.quantity <= 0:
        return False
    if item.unit_price is None or item.unit_price <= 0:
        return False
    return True


class PatternDetector:
    """Detects candidate operations from line items"""

    def __init__(self, hooks: Sequence[PatternHook] = ()):
        self.hooks = list(hooks)

    def can_generate_operation(self, item: Optional[LineItem]) -> bool:
        return item is not None and is_structurally_valid(item)

    def detect(
        self,
        items: Sequence[LineItem],
        user_id: str,
        invoice_id: Optional[int] = None,
        default_trade_date: Optional[date] = None,
    ) -> list[DetectedOperation]:
        """
        Detect one operation per valid item

        Args:
            items: Line items of one invoice
            user_id: Owner of the invoice
            invoice_id: Invoice the items belong to
            default_trade_date: Used when an item carries no date of its own

        Returns:
            Detected operations, in item order
        """
        detected = []
        for item in items:
            try:
                operation = self._detect_item(item, user_id, invoice_id, default_trade_date)
            except (AttributeError, TypeError, ValueError, ArithmeticError) as exc:
                logger.warning(
                    "Skipping malformed line item %s: %s",
                    getattr(item, "sequence_number", "?"), exc,
                )
                continue
            if operation is not None:
                detected.append(operation)

        logger.debug("Detected %d operations from %d items", len(detected), len(items))
        return detected

    def find_patterns(self, items: Sequence[LineItem]) -> list[TradePattern]:
        patterns: list[TradePattern] = []
        for hook in self.hooks:
            patterns.extend(hook.find_patterns(items))
        return patterns

    def _detect_item(
        self,
        item: LineItem,
        user_id: str,
        invoice_id: Optional[int],
        default_trade_date: Optional[date],
    ) -> Optional[DetectedOperation]:
        if not is_structurally_valid(item):
            logger.debug(
                "Low-confidence miss: item %s is not a valid trade line",
                item.sequence_number,
            )
            return None

        trade_date = item.trade_date or default_trade_date
        confidence, factors = self._score(item, trade_date)
        total_value = item.total_value
        if total_value is None:
            total_value = item.unit_price * item.quantity

        return DetectedOperation(
            user_id=user_id,
            invoice_id=invoice_id if invoice_id is not None else item.invoice_id,
            asset_code=item.asset_code.strip().upper(),
            side=item.side,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_value=total_value,
            trade_date=trade_date,
            confidence=confidence,
            reason=f"Confidence {confidence * 100:.0f}%: " + ", ".join(factors),
            source_items=(item,),
            is_day_trade=item.is_day_trade,
            notes=self._build_notes(item),
        )

    def _score(self, item: LineItem, trade_date: Optional[date]) -> tuple[Decimal, list[str]]:
        confidence = BASE_CONFIDENCE
        factors = []
        if item.unit_price is not None and item.unit_price > 0:
            confidence += PRICE_BONUS
            factors.append("valid price")
        if item.quantity is not None and item.quantity > 0:
            confidence += QUANTITY_BONUS
            factors.append("valid quantity")
        if item.asset_code and item.asset_code.strip():
            confidence += ASSET_BONUS
            factors.append("asset code")
        if trade_date is not None:
            confidence += DATE_BONUS
            factors.append("trade date")
        if item.is_day_trade:
            confidence += DAY_TRADE_FLAG_BONUS
            factors.append("day trade flagged")
        return min(confidence, MAX_CONFIDENCE), factors

    @staticmethod
    def _build_notes(item: LineItem) -> str:
        notes = []
        if item.is_day_trade:
            notes.append("Day Trade")
        if item.observations and item.observations.strip():
            notes.append(f"Obs: {item.observations.strip()}")
        return "; ".join(notes)
