"""
DETECTION ENGINE
Runs detect -> classify -> consolidate over a batch of invoices

Invoices arrive with their line items already fetched; the engine never
loads related data on its own.
"""

import logging
import time
from dataclasses import replace
from typing import Optional, Sequence

from app.config import settings
from app.domain.models import DetectionResult, InvoiceBatchEntry, LineItem
from app.domain.services.operation_consolidator import OperationConsolidator
from app.domain.services.pattern_detector import PatternDetector, SameDayRoundTripHook
from app.domain.services.type_classifier import TypeClassifier

logger = logging.getLogger(__name__)


class DetectionEngine:
    """Detection pipeline over explicitly supplied invoices"""

    def __init__(
        self,
        detector: Optional[PatternDetector] = None,
        classifier: Optional[TypeClassifier] = None,
        consolidator: Optional[OperationConsolidator] = None,
    ):
        if detector is None:
            hooks = [SameDayRoundTripHook()] if settings.DETECT_SAME_DAY_PATTERNS else []
            detector = PatternDetector(hooks=hooks)
        self.detector = detector
        self.classifier = classifier or TypeClassifier()
        self.consolidator = consolidator or OperationConsolidator()

    def detect(self, batch: Sequence[InvoiceBatchEntry], user_id: str) -> DetectionResult:
        """
        Detect, classify and consolidate the operations of a batch

        Args:
            batch: Invoices with their line items
            user_id: Owner of the batch

        Returns:
            DetectionResult; success is False when nothing could be detected
        """
        started = time.perf_counter()
        result = DetectionResult(success=True, total_invoices=len(batch))

        for entry in batch:
            items = [self._with_trade_date(item, entry) for item in entry.items]
            result.total_items += len(items)
            result.detected.extend(self.detector.detect(
                items,
                user_id=user_id,
                invoice_id=entry.invoice.id,
                default_trade_date=entry.invoice.trading_date,
            ))
            result.patterns.extend(self.detector.find_patterns(items))

        result.classified = self.classifier.classify_all(result.detected, result.patterns)
        consolidated = self.consolidator.consolidate(result.classified)
        result.consolidated = sorted(consolidated, key=lambda op: op.ordering_key)
        result.processing_time_ms = int((time.perf_counter() - started) * 1000)

        if result.total_items == 0:
            result.success = False
            result.error_message = "No line items found in the selected invoices"
        elif not result.detected:
            result.success = False
            result.error_message = "No valid operations detected"

        logger.info(
            "Detection finished: %d items, %d detected, %d consolidated "
            "(%.1f%% detection rate, %.1f%% consolidation rate) %s",
            result.total_items, len(result.detected), len(result.consolidated),
            result.detection_rate, result.consolidation_rate, result.type_distribution,
        )
        for pattern in result.patterns:
            logger.info(
                "🔁 %s round trip on %s %s: %d units matched",
                pattern.trade_type.value, pattern.asset_code, pattern.trade_date,
                pattern.matched_quantity,
            )
        return result

    def can_generate_operation(self, item: Optional[LineItem]) -> bool:
        return self.detector.can_generate_operation(item)

    @staticmethod
    def _with_trade_date(item: LineItem, entry: InvoiceBatchEntry) -> LineItem:
        changes = {}
        if item.trade_date is None:
            changes["trade_date"] = entry.invoice.trading_date
        if item.invoice_id is None and entry.invoice.id is not None:
            changes["invoice_id"] = entry.invoice.id
        return replace(item, **changes) if changes else item
