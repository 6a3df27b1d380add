"""
INTEGRATION PROCESSOR - ASYNC VERSION
Folds consolidated operations into positions and writes the audit trail

RULES:
✅ One savepoint per consolidated operation (all-or-nothing)
✅ One source mapping per contributing line item, sequence strictly increasing per invoice
✅ A line item already mapped is rejected as DUPLICATE
❌ One failing operation never aborts its siblings (unless SYSTEM/UNKNOWN)
"""

import logging
import time
from decimal import Decimal
from typing import Optional, Sequence

from app.config import settings
from app.domain.errors import DuplicateOperationError, IntegrationError
from app.domain.models import (
    ConsolidatedOperation,
    ErrorCategory,
    IntegrationResult,
    MappingType,
    Operation,
    OperationRole,
    ProcessedOperation,
    SourceMapping,
    TradeType,
    ValidationSummary,
)
from app.domain.services.error_handler import ErrorHandler
from app.domain.services.exit_consolidation_engine import (
    ExitConsolidationEngine,
    Fill,
    LotOutcome,
)
from app.domain.services.operation_validation_service import OperationValidationService
from app.domain.services.protocols import UnitOfWork
from app.utils.time import now_local_naive

logger = logging.getLogger(__name__)

FATAL_CATEGORIES = (ErrorCategory.SYSTEM, ErrorCategory.UNKNOWN)


class IntegrationProcessor:
    """
    Integration Processor - ASYNC VERSION
    Creates positions/operations from consolidated operations
    """

    def __init__(
        self,
        uow: UnitOfWork,
        lot_engine: Optional[ExitConsolidationEngine] = None,
        validator: Optional[OperationValidationService] = None,
        error_handler: Optional[ErrorHandler] = None,
        min_confidence: Optional[Decimal] = None,
    ):
        self.uow = uow
        self.lot_engine = lot_engine or ExitConsolidationEngine(
            position_repo=uow.positions,
            entry_lot_repo=uow.entry_lots,
            exit_record_repo=uow.exit_records,
            operation_repo=uow.operations,
            group_repo=uow.groups,
        )
        self.validator = validator or OperationValidationService()
        self.error_handler = error_handler or ErrorHandler()
        self.min_confidence = min_confidence or Decimal(str(settings.INTEGRATION_MIN_CONFIDENCE))

    def can_integrate(self, operation: ConsolidatedOperation) -> bool:
        """Ready with enough confidence, or explicitly confirmed"""
        if operation.confirmed:
            return True
        return operation.ready_for_creation and operation.confidence >= self.min_confidence

    def validate_operations_for_integration(
        self, operations: Sequence[ConsolidatedOperation]
    ) -> ValidationSummary:
        """
        Re-check consolidated operations before touching positions

        Returns:
            ValidationSummary splitting eligible from rejected operations
        """
        summary = ValidationSummary()
        for operation in operations:
            result = self.validator.validate(operation)
            if result.is_valid and self.can_integrate(operation):
                summary.valid.append(operation)
            else:
                if result.is_valid:
                    result.errors.append(
                        f"Confidence {operation.confidence} below {self.min_confidence} "
                        "and operation not confirmed"
                    )
                summary.invalid.append(result)
            summary.warnings.extend(
                f"{operation.asset_code} {operation.side.value}: {w}" for w in result.warnings
            )

        logger.info(
            "Pre-integration check: %d valid, %d invalid (%.1f%%)",
            len(summary.valid), len(summary.invalid), summary.success_rate,
        )
        return summary

    async def process_integration(
        self, operations: Sequence[ConsolidatedOperation]
    ) -> IntegrationResult:
        """
        Integrate operations in order, each inside its own savepoint

        Retryable failures (DATABASE/NETWORK) propagate so the batch can be
        retried as a whole. SYSTEM/UNKNOWN failures stop the loop and are
        reported as fatal_error.

        Args:
            operations: Consolidated operations in chronological order

        Returns:
            IntegrationResult with created/updated/failed outcomes
        """
        started = time.perf_counter()
        result = IntegrationResult()

        for consolidated in operations:
            try:
                async with self.uow.savepoint():
                    processed = await self._integrate_one(consolidated)
            except Exception as exc:
                error = self.error_handler.handle(
                    exc, context=f"integration of {consolidated.asset_code}"
                )
                if error.retryable:
                    raise
                if error.category in FATAL_CATEGORIES:
                    result.fatal_error = error
                    logger.error("🛑 Integration stopped by fatal error: %s", error.message)
                    break
                result.failed.append(ProcessedOperation(
                    consolidated=consolidated, success=False, error=error,
                ))
                continue

            result.total_mappings += processed.mappings_written
            if processed.created:
                result.created.append(processed)
            else:
                result.updated.append(processed)

        result.processing_time_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "✅ Integration finished: %d created, %d updated, %d failed, %d mappings",
            len(result.created), len(result.updated), len(result.failed), result.total_mappings,
        )
        return result

    async def _integrate_one(self, consolidated: ConsolidatedOperation) -> ProcessedOperation:
        items = consolidated.source_items
        missing = [item.sequence_number for item in items if item.id is None or item.invoice_id is None]
        if missing:
            raise IntegrationError(
                f"Line items {missing} have no persisted identity", asset=consolidated.asset_code
            )

        for item in items:
            if await self.uow.source_mappings.exists_for_line_item(item.id):
                raise DuplicateOperationError(
                    f"Line item {item.id} was already integrated", line_item_id=item.id
                )

        fill = Fill(
            user_id=consolidated.user_id,
            asset_code=consolidated.asset_code,
            side=consolidated.side,
            trade_type=consolidated.trade_type,
            trade_date=consolidated.trade_date,
            quantity=consolidated.quantity,
            total_value=consolidated.total_value,
        )
        day_trade = consolidated.trade_type == TradeType.DAY

        position = await self.uow.positions.find_open(fill.user_id, fill.asset_code)
        if position is None:
            outcome = await self.lot_engine.open_position(fill)
            mapping_type = MappingType.DAY_TRADE_ENTRY if day_trade else MappingType.NEW_OPERATION
        elif position.direction == fill.side:
            outcome = await self.lot_engine.add_entry(position, fill)
            mapping_type = MappingType.DAY_TRADE_ENTRY if day_trade else MappingType.NEW_OPERATION
        else:
            outcome = await self.lot_engine.process_exit(position, fill)
            mapping_type = (
                MappingType.DAY_TRADE_EXIT if day_trade else MappingType.EXISTING_OPERATION_EXIT
            )

        written = await self._write_mappings(consolidated, outcome.operation, mapping_type)
        return ProcessedOperation(
            consolidated=consolidated,
            success=True,
            operation=outcome.operation,
            created=self._is_creation(outcome),
            mapping_type=mapping_type,
            mappings_written=written,
        )

    async def _write_mappings(
        self,
        consolidated: ConsolidatedOperation,
        operation: Operation,
        mapping_type: MappingType,
    ) -> int:
        written = 0
        for item in consolidated.source_items:
            sequence = await self.uow.source_mappings.next_sequence(item.invoice_id)
            await self.uow.source_mappings.create(SourceMapping(
                operation_id=operation.id,
                invoice_id=item.invoice_id,
                line_item_id=item.id,
                mapping_type=mapping_type,
                processing_sequence=sequence,
                notes=consolidated.notes or consolidated.reason,
                created_at=now_local_naive(),
            ))
            written += 1
        return written

    @staticmethod
    def _is_creation(outcome: LotOutcome) -> bool:
        return outcome.role == OperationRole.ORIGINAL
