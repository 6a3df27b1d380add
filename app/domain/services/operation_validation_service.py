"""
OPERATION VALIDATION SERVICE
Pre-integration re-check of consolidated operations
"""

from decimal import Decimal
from typing import Optional

from app.config import settings
from app.domain.models import ConsolidatedOperation, OperationValidationResult
from app.domain.services.operation_consolidator import UNIT_PRICE_PRECISION

# worst-case error per unit left by quantizing a merged unit price
UNIT_PRICE_ROUNDING = UNIT_PRICE_PRECISION / 2


class OperationValidationService:
    """Checks a consolidated operation before it touches positions"""

    def __init__(
        self,
        value_tolerance: Optional[Decimal] = None,
        low_confidence: Optional[Decimal] = None,
        large_quantity: Optional[int] = None,
        large_value: Optional[Decimal] = None,
    ):
        self.value_tolerance = value_tolerance or Decimal(str(settings.VALUE_TOLERANCE))
        self.low_confidence = low_confidence or Decimal(str(settings.LOW_CONFIDENCE_WARNING))
        self.large_quantity = large_quantity or settings.LARGE_QUANTITY_WARNING
        self.large_value = large_value or Decimal(str(settings.LARGE_VALUE_WARNING))

    def validate(self, operation: ConsolidatedOperation) -> OperationValidationResult:
        result = OperationValidationResult(operation=operation)
        errors = result.errors

        if not operation.asset_code:
            errors.append("Asset code is required")
        if operation.side is None:
            errors.append("Transaction side is required")
        if operation.trade_date is None:
            errors.append("Trade date is required")
        if operation.quantity <= 0:
            errors.append("Quantity must be positive")
        if operation.unit_price <= 0:
            errors.append("Unit price must be positive")
        if not operation.user_id:
            errors.append("User is required")
        if not operation.ready_for_creation:
            errors.append(f"Operation is not ready for creation (confidence {operation.confidence})")
        if not operation.sources:
            errors.append("Operation has no source operations")

        if operation.quantity > 0:
            expected = operation.unit_price * operation.quantity
            tolerance = self.value_tolerance + UNIT_PRICE_ROUNDING * operation.quantity
            if abs(expected - operation.total_value) > tolerance:
                errors.append(
                    f"Total value {operation.total_value} does not match "
                    f"quantity x unit price ({expected})"
                )

        if operation.confidence < self.low_confidence:
            result.warnings.append(f"Low confidence: {operation.confidence}")
        if operation.quantity > self.large_quantity:
            result.warnings.append(f"Large quantity: {operation.quantity}")
        if operation.total_value > self.large_value:
            result.warnings.append(f"Large total value: {operation.total_value}")
        return result
