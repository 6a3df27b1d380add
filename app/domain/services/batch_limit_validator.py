"""
BATCH LIMIT VALIDATOR
Hard resource ceilings checked before any side effect

Any violated ceiling rejects the whole batch. Reaching 80% of a ceiling
only warns.
"""

from decimal import Decimal
from typing import Optional, Sequence

from app.config import settings
from app.domain.models import BatchLimitResult, InvoiceBatchEntry

WARNING_RATIO = Decimal("0.8")


class BatchLimitValidator:
    """Validates batch size, item counts, monetary value and concurrency"""

    def __init__(
        self,
        max_invoices: Optional[int] = None,
        max_items: Optional[int] = None,
        max_items_per_invoice: Optional[int] = None,
        max_total_value: Optional[Decimal] = None,
        max_active_sessions: Optional[int] = None,
    ):
        self.max_invoices = max_invoices or settings.MAX_INVOICES_PER_BATCH
        self.max_items = max_items or settings.MAX_ITEMS_PER_BATCH
        self.max_items_per_invoice = max_items_per_invoice or settings.MAX_ITEMS_PER_INVOICE
        self.max_total_value = max_total_value or Decimal(str(settings.MAX_TOTAL_VALUE_PER_BATCH))
        self.max_active_sessions = max_active_sessions or settings.MAX_ACTIVE_SESSIONS_PER_USER

    def validate(
        self,
        batch: Sequence[InvoiceBatchEntry],
        active_sessions: int = 0,
    ) -> BatchLimitResult:
        """
        Check every ceiling

        Args:
            batch: Invoices with all their items
            active_sessions: Other processing sessions the user has running

        Returns:
            BatchLimitResult
        """
        result = BatchLimitResult()

        if not batch:
            result.errors.append("Batch is empty")
            return result

        if len(batch) > self.max_invoices:
            result.errors.append(
                f"Batch has {len(batch)} invoices (max {self.max_invoices})"
            )
        elif len(batch) >= self.max_invoices * WARNING_RATIO:
            result.warnings.append(f"Batch is close to the invoice limit ({len(batch)}/{self.max_invoices})")

        total_items = sum(len(entry.items) for entry in batch)
        if total_items == 0:
            result.errors.append("Batch has no line items")
        elif total_items > self.max_items:
            result.errors.append(f"Batch has {total_items} line items (max {self.max_items})")
        elif total_items >= self.max_items * WARNING_RATIO:
            result.warnings.append(f"Batch is close to the item limit ({total_items}/{self.max_items})")

        for entry in batch:
            if len(entry.items) > self.max_items_per_invoice:
                result.errors.append(
                    f"Invoice {entry.invoice.invoice_number} has {len(entry.items)} line items "
                    f"(max {self.max_items_per_invoice})"
                )

        total_value = sum(
            (item.total_value for entry in batch for item in entry.items if item.total_value is not None),
            Decimal("0"),
        )
        if total_value > self.max_total_value:
            result.errors.append(
                f"Batch total value {total_value} exceeds {self.max_total_value}"
            )
        elif total_value >= self.max_total_value * WARNING_RATIO:
            result.warnings.append(f"Batch total value {total_value} is close to the limit")

        if active_sessions >= self.max_active_sessions:
            result.errors.append(
                f"User already has {active_sessions} active processing session(s) "
                f"(max {self.max_active_sessions})"
            )
        return result
