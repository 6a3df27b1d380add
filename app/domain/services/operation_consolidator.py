"""
OPERATION CONSOLIDATOR
Merges classified operations sharing (asset, side, trade type, trade date)
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

from app.domain.models import ClassifiedOperation, ConsolidatedOperation

logger = logging.getLogger(__name__)

UNIT_PRICE_PRECISION = Decimal("0.0001")
MEMBER_BONUS = Decimal("0.1")
MAX_MEMBER_BONUS = Decimal("0.3")
MAX_CONFIDENCE = Decimal("1.0")
CONFIRMED_THRESHOLD = Decimal("0.8")
READY_THRESHOLD = Decimal("0.6")


class OperationConsolidator:
    """Groups classified operations and builds weighted-average operations"""

    def consolidate(self, classified: Sequence[ClassifiedOperation]) -> list[ConsolidatedOperation]:
        """
        Consolidate classified operations by grouping key

        A group that fails to consolidate is logged and dropped; the other
        groups are still returned.
        """
        groups: dict[tuple, list[ClassifiedOperation]] = {}
        for operation in classified:
            groups.setdefault(operation.grouping_key, []).append(operation)

        consolidated = []
        for key, members in groups.items():
            try:
                consolidated.append(self._consolidate_group(members))
            except (ArithmeticError, TypeError, ValueError) as exc:
                logger.error("Failed to consolidate group %s: %s", key, exc)

        logger.info(
            "Consolidated %d classified operations into %d",
            len(classified), len(consolidated),
        )
        return consolidated

    def _consolidate_group(self, members: list[ClassifiedOperation]) -> ConsolidatedOperation:
        first = members[0]
        quantity = sum(member.quantity for member in members)
        total_value = sum((member.total_value for member in members), Decimal("0"))
        if quantity <= 0:
            raise ValueError("Consolidated quantity must be positive")

        unit_price = (total_value / quantity).quantize(UNIT_PRICE_PRECISION, rounding=ROUND_HALF_UP)

        count = len(members)
        average = sum((member.confidence for member in members), Decimal("0")) / count
        confidence = min(average + min(MEMBER_BONUS * count, MAX_MEMBER_BONUS), MAX_CONFIDENCE)

        if count == 1:
            reason = "single operation"
        else:
            reason = f"Consolidated {count} operations of same asset/type/date"

        notes: list[str] = []
        for member in members:
            if member.detected.notes and member.detected.notes not in notes:
                notes.append(member.detected.notes)

        return ConsolidatedOperation(
            user_id=first.detected.user_id,
            asset_code=first.asset_code,
            side=first.side,
            trade_type=first.trade_type,
            trade_date=first.trade_date,
            quantity=quantity,
            unit_price=unit_price,
            total_value=total_value,
            confidence=confidence,
            sources=tuple(members),
            confirmed=confidence >= CONFIRMED_THRESHOLD,
            ready_for_creation=confidence >= READY_THRESHOLD,
            reason=reason,
            notes="; ".join(notes),
        )
