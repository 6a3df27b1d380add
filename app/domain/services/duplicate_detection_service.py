"""
DUPLICATE DETECTION SERVICE - ASYNC
Finds line items that were, or look like they were, already processed

Checks, in order:
1. Item already linked to an operation through a source mapping
2. Existing operation with the same asset/side/quantity/date at a similar price
3. Items of the batch itself clustered at a similar price
"""

import logging
from decimal import Decimal
from typing import Optional, Sequence

from app.config import settings
from app.domain.models import (
    DuplicateFinding,
    DuplicateKind,
    DuplicateReport,
    InvoiceBatchEntry,
    LineItem,
)
from app.domain.services.protocols import OperationRepository, SourceMappingRepository

logger = logging.getLogger(__name__)


class DuplicateDetectionService:
    """Duplicate checks against history and within a batch"""

    def __init__(
        self,
        source_mappings: SourceMappingRepository,
        operations: OperationRepository,
        price_threshold: Optional[Decimal] = None,
    ):
        self.source_mappings = source_mappings
        self.operations = operations
        self.price_threshold = price_threshold or Decimal(str(settings.PRICE_SIMILARITY_THRESHOLD))

    async def check(self, batch: Sequence[InvoiceBatchEntry], user_id: str) -> DuplicateReport:
        """
        Run every duplicate check over a batch

        Args:
            batch: Invoices with the items that passed field validation
            user_id: Owner of the batch

        Returns:
            DuplicateReport; blocking findings stop the batch
        """
        report = DuplicateReport()
        for entry in batch:
            for item in entry.items:
                finding = await self._check_history(entry, item, user_id)
                if finding is not None:
                    report.findings.append(finding)

        report.findings.extend(self.check_within_batch(batch))

        if report.has_duplicates:
            logger.warning("Duplicate check found %d blocking duplicates", len(report.blocking))
        return report

    async def _check_history(
        self, entry: InvoiceBatchEntry, item: LineItem, user_id: str
    ) -> Optional[DuplicateFinding]:
        label = f"Item {item.sequence_number} of invoice {entry.invoice.invoice_number}"

        if item.id is not None and await self.source_mappings.exists_for_line_item(item.id):
            return DuplicateFinding(
                kind=DuplicateKind.ALREADY_PROCESSED,
                invoice_id=entry.invoice.id,
                line_item_id=item.id,
                message=f"{label} was already processed",
            )

        trade_date = item.trade_date or entry.invoice.trading_date
        matches = await self.operations.find_similar(
            user_id=user_id,
            asset_code=item.asset_code.strip().upper(),
            side=item.side,
            quantity=item.quantity,
            trade_date=trade_date,
        )
        for operation in matches:
            if abs(operation.unit_price - item.unit_price) <= self.price_threshold:
                return DuplicateFinding(
                    kind=DuplicateKind.EXISTING_OPERATION,
                    invoice_id=entry.invoice.id,
                    line_item_id=item.id,
                    message=f"{label} matches existing operation {operation.id}",
                )
        return None

    def check_within_batch(self, batch: Sequence[InvoiceBatchEntry]) -> list[DuplicateFinding]:
        """
        Price-similarity clustering over the batch

        Similar items from different invoices with the same quantity block the
        batch; similar items inside one invoice are partial fills and only warn.
        """
        rows = [
            (entry, item, item.trade_date or entry.invoice.trading_date)
            for entry in batch
            for item in entry.items
        ]
        findings = []
        for index, (entry, item, trade_date) in enumerate(rows):
            for other_entry, other, other_date in rows[index + 1:]:
                if (
                    item.asset_code.strip().upper() != other.asset_code.strip().upper()
                    or item.side != other.side
                    or trade_date != other_date
                    or abs(item.unit_price - other.unit_price) > self.price_threshold
                ):
                    continue

                same_invoice = entry.invoice.id == other_entry.invoice.id
                blocking = not same_invoice and item.quantity == other.quantity
                findings.append(DuplicateFinding(
                    kind=DuplicateKind.SIMILAR_PRICE,
                    invoice_id=other_entry.invoice.id,
                    line_item_id=other.id,
                    message=(
                        f"Item {other.sequence_number} of invoice "
                        f"{other_entry.invoice.invoice_number} looks like a duplicate of item "
                        f"{item.sequence_number} of invoice {entry.invoice.invoice_number}"
                    ),
                    blocking=blocking,
                ))
        return findings
