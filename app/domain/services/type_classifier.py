"""
TYPE CLASSIFIER
Assigns DAY or SWING to detected operations

Deterministic: the same detected operation and signals always yield the
same trade type, confidence and reason.
"""

import re
from decimal import Decimal
from typing import Iterable, Optional

from app.config import settings
from app.domain.models import (
    ClassifiedOperation,
    DetectedOperation,
    TradePattern,
    TradeType,
)

MARKER_DAY_BONUS = Decimal("0.2")
SAME_DAY_BONUS = Decimal("0.1")
DEFAULT_SWING_BONUS = Decimal("0.1")
MAX_CONFIDENCE = Decimal("1.0")

_DAY_TRADE_TOKENS = frozenset({"D", "DT", "DAYTRADE"})
_TOKEN_SPLIT = re.compile(r"[^A-Z0-9]+")


def has_day_trade_marker(text: Optional[str]) -> bool:
    """True if free text carries a day-trade marker (DAY TRADE, DT or a lone D)"""
    if not text:
        return False
    upper = text.upper()
    if "DAY TRADE" in upper:
        return True
    return any(token in _DAY_TRADE_TOKENS for token in _TOKEN_SPLIT.split(upper))


class TypeClassifier:
    """Classifies detected operations into day or swing trades"""

    def __init__(self, use_same_day_signal: Optional[bool] = None):
        if use_same_day_signal is None:
            use_same_day_signal = settings.DETECT_SAME_DAY_PATTERNS
        self.use_same_day_signal = use_same_day_signal

    def classify(
        self,
        detected: DetectedOperation,
        same_day_item_ids: frozenset[int] = frozenset(),
    ) -> ClassifiedOperation:
        """
        Classify one detected operation

        Args:
            detected: Operation to classify
            same_day_item_ids: Line items that belong to a same-day round trip

        Returns:
            ClassifiedOperation with bonus-adjusted confidence
        """
        if has_day_trade_marker(detected.notes):
            trade_type = TradeType.DAY
            bonus = MARKER_DAY_BONUS
            reason = "Classified as DAY: day-trade marker in notes (same day)"
        elif self.use_same_day_signal and self._in_same_day_pattern(detected, same_day_item_ids):
            trade_type = TradeType.DAY
            bonus = SAME_DAY_BONUS
            reason = "Classified as DAY: opposite-side trade on the same day"
        else:
            trade_type = TradeType.SWING
            bonus = DEFAULT_SWING_BONUS
            reason = "Classified as SWING: default (different days)"

        return ClassifiedOperation(
            detected=detected,
            trade_type=trade_type,
            confidence=min(detected.confidence + bonus, MAX_CONFIDENCE),
            reason=reason,
        )

    def classify_all(
        self,
        detected: Iterable[DetectedOperation],
        patterns: Iterable[TradePattern] = (),
    ) -> list[ClassifiedOperation]:
        same_day_ids = frozenset(
            item_id
            for pattern in patterns
            if pattern.trade_type == TradeType.DAY
            for item_id in pattern.line_item_ids
        )
        return [self.classify(operation, same_day_ids) for operation in detected]

    @staticmethod
    def _in_same_day_pattern(detected: DetectedOperation, item_ids: frozenset[int]) -> bool:
        return any(item.id in item_ids for item in detected.source_items if item.id is not None)
