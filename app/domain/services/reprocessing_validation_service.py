"""
REPROCESSING VALIDATION SERVICE
Decides whether an invoice may be (re)processed now
"""

from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from app.config import settings
from app.domain.models import Invoice, LineItem, ReprocessingResult
from app.utils.time import now_local_naive


class ReprocessingValidationService:
    """Ownership, content and attempt/interval checks"""

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        min_interval_hours: Optional[int] = None,
        clock: Callable[[], datetime] = now_local_naive,
    ):
        self.max_attempts = max_attempts or settings.MAX_REPROCESSING_ATTEMPTS
        self.min_interval = timedelta(
            hours=min_interval_hours or settings.MIN_REPROCESSING_INTERVAL_HOURS
        )
        self.clock = clock

    def check(self, invoice: Invoice, items: Sequence[LineItem], user_id: str) -> ReprocessingResult:
        reasons = []
        if not items:
            reasons.append("Invoice has no line items")
        if invoice.user_id != user_id:
            reasons.append("Invoice does not belong to the requesting user")

        is_reprocessing = invoice.was_processed
        if is_reprocessing:
            if invoice.processing_attempts >= self.max_attempts:
                reasons.append(
                    f"Invoice reached the maximum of {self.max_attempts} processing attempts"
                )
            if invoice.updated_at is not None and self.clock() - invoice.updated_at < self.min_interval:
                reasons.append(
                    f"Invoice was processed less than {self.min_interval} ago"
                )

        return ReprocessingResult(
            allowed=not reasons,
            is_reprocessing=is_reprocessing,
            reasons=reasons,
        )
