"""
PROCESSING ORCHESTRATOR - ASYNC VERSION
Runs a batch of invoices from validation to integration

STAGES:
10  validate invoices (limits, eligibility, fields, duplicates)
20  fetch validated invoices
40  detect -> classify -> consolidate
60  pre-integration check
80  integrate (lot accounting)
100 finalize statistics

RULES:
✅ The whole batch is one transaction: success commits, anything else rolls back
✅ Cancellation is checked between stages, never inside one
✅ Retry wraps whole single-pass invocations
❌ No stage runs when the previous one reported failure
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from app.domain.errors import (
    DetectionError,
    DuplicateOperationError,
    IntegrationError,
    InvoiceValidationError,
)
from app.domain.models import (
    BatchResult,
    BatchValidationReport,
    InvoiceBatchEntry,
    InvoiceProcessingStatus,
)
from app.domain.services.batch_limit_validator import BatchLimitValidator
from app.domain.services.detection_engine import DetectionEngine
from app.domain.services.duplicate_detection_service import DuplicateDetectionService
from app.domain.services.error_handler import ErrorHandler
from app.domain.services.integration_processor import IntegrationProcessor
from app.domain.services.invoice_validation_service import InvoiceValidationService
from app.domain.services.protocols import UnitOfWork
from app.domain.services.reprocessing_validation_service import ReprocessingValidationService
from app.domain.services.session_store import InMemorySessionStore, SessionStatus, SessionStore
from app.domain.services.transaction_manager import TransactionManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


@dataclass
class _BatchRun:
    session_id: str
    user_id: str
    invoice_ids: list[int]
    callback: Optional[ProgressCallback] = None
    progress: int = 0
    processed_invoice_ids: list[int] = field(default_factory=list)


class ProcessingOrchestrator:
    """
    Processing Orchestrator - ASYNC VERSION
    Entry point for batch and single-invoice processing
    """

    def __init__(
        self,
        uow: UnitOfWork,
        session_store: Optional[SessionStore] = None,
        invoice_validator: Optional[InvoiceValidationService] = None,
        limit_validator: Optional[BatchLimitValidator] = None,
        reprocessing_validator: Optional[ReprocessingValidationService] = None,
        duplicate_service: Optional[DuplicateDetectionService] = None,
        detection_engine: Optional[DetectionEngine] = None,
        integration_processor: Optional[IntegrationProcessor] = None,
        error_handler: Optional[ErrorHandler] = None,
        transaction_manager: Optional[TransactionManager] = None,
    ):
        """Initialize with the unit of work and optional stage overrides"""
        self.uow = uow
        self.session_store = session_store or InMemorySessionStore()
        self.error_handler = error_handler or ErrorHandler()
        self.invoice_validator = invoice_validator or InvoiceValidationService()
        self.limit_validator = limit_validator or BatchLimitValidator()
        self.reprocessing_validator = reprocessing_validator or ReprocessingValidationService()
        self.duplicate_service = duplicate_service or DuplicateDetectionService(
            source_mappings=uow.source_mappings,
            operations=uow.operations,
        )
        self.detection_engine = detection_engine or DetectionEngine()
        self.integration_processor = integration_processor or IntegrationProcessor(
            uow, error_handler=self.error_handler
        )
        self.transactions = transaction_manager or TransactionManager(
            uow, error_handler=self.error_handler
        )

    # ======================
    # Entry points
    # ======================

    async def process_batch(
        self,
        invoice_ids: Sequence[int],
        user_id: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Process a batch of invoices in a single pass

        Args:
            invoice_ids: Invoices to process
            user_id: Requesting user
            progress_callback: Called with (progress, message) at each checkpoint

        Returns:
            BatchResult with per-stage counts
        """
        return await self._process(invoice_ids, user_id, progress_callback, retry=False)

    async def process_batch_with_retry(
        self,
        invoice_ids: Sequence[int],
        user_id: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """Same as process_batch, re-running the batch on DATABASE/NETWORK failures"""
        return await self._process(invoice_ids, user_id, progress_callback, retry=True)

    async def process_single_invoice(self, invoice_id: int, user_id: str) -> BatchResult:
        return await self.process_batch([invoice_id], user_id)

    async def _process(
        self,
        invoice_ids: Sequence[int],
        user_id: str,
        progress_callback: Optional[ProgressCallback],
        retry: bool,
    ) -> BatchResult:
        started = time.perf_counter()
        invoice_ids = list(dict.fromkeys(invoice_ids))
        session = await self.session_store.create(user_id, invoice_ids)
        run = _BatchRun(
            session_id=session.id,
            user_id=user_id,
            invoice_ids=invoice_ids,
            callback=progress_callback,
        )
        logger.info(
            "🚀 Processing %d invoices for user %s (session %s)",
            len(invoice_ids), user_id, session.id,
        )

        async def work() -> BatchResult:
            return await self._run(run)

        try:
            if retry:
                result = await self.transactions.execute_with_retry(work)
            else:
                result = await self.transactions.execute(work)
        except Exception as exc:
            error = self.error_handler.handle(exc, context="batch processing")
            result = BatchResult(
                success=False,
                message=error.user_message,
                progress=run.progress,
                total_invoices=len(invoice_ids),
                errors=[error],
            )

        result.session_id = session.id
        try:
            await self._stamp_invoices(run.processed_invoice_ids, result)
        except Exception as exc:
            error = self.error_handler.handle(exc, context="invoice status update")
            result.errors.append(error)
            result.warnings.append(f"Invoice statuses were not updated: {error.user_message}")
        finally:
            result.processing_time_ms = int((time.perf_counter() - started) * 1000)
            if result.errors:
                result.error_report = self.error_handler.generate_error_report(result.errors)
            await self._finish_session(session.id, result)

        logger.info(
            "📊 Batch finished: success=%s created=%d failed=%d (%.1f%%) in %dms",
            result.success, result.created_operations, result.failed_operations,
            result.overall_success_rate, result.processing_time_ms,
        )
        return result

    # ======================
    # Validation
    # ======================

    async def validate_batch(
        self,
        invoice_ids: Sequence[int],
        user_id: str,
        active_sessions: int = 0,
    ) -> BatchValidationReport:
        """
        Fetch and validate the invoices of a batch

        Limits are checked first and reject the whole batch. Eligibility and
        field validation reject individual invoices; blocking duplicates
        reject the batch.

        Returns:
            BatchValidationReport; valid entries carry only their valid items
        """
        report = BatchValidationReport()

        fetched = []
        for invoice_id in invoice_ids:
            invoice = await self.uow.invoices.get(invoice_id)
            if invoice is None:
                report.invalid_invoices[invoice_id] = ["Invoice not found"]
                continue
            items = await self.uow.invoices.list_items(invoice_id)
            fetched.append(InvoiceBatchEntry(invoice=invoice, items=tuple(items)))

        report.limits = self.limit_validator.validate(fetched, active_sessions=active_sessions)
        report.warnings.extend(report.limits.warnings)
        if not report.limits.is_valid:
            return report

        for entry in fetched:
            invoice = entry.invoice
            eligibility = self.reprocessing_validator.check(invoice, entry.items, user_id)
            if not eligibility.allowed:
                report.invalid_invoices[invoice.id] = list(eligibility.reasons)
                continue

            validation = self.invoice_validator.validate(invoice, entry.items)
            report.warnings.extend(
                f"Invoice {invoice.invoice_number}: {warning}" for warning in validation.warnings
            )
            if not validation.is_valid:
                report.invalid_invoices[invoice.id] = list(validation.errors)
                continue
            report.valid_invoices.append(
                InvoiceBatchEntry(invoice=invoice, items=tuple(validation.valid_items))
            )

        if len(report.valid_invoices) > 1:
            warnings, _ = self.invoice_validator.analyze_items(
                [item for entry in report.valid_invoices for item in entry.items]
            )
            report.warnings.extend(f"Batch: {warning}" for warning in warnings)

        if report.valid_invoices:
            report.duplicates = await self.duplicate_service.check(report.valid_invoices, user_id)
            report.warnings.extend(report.duplicates.warnings)

        logger.info(
            "Validation: %d valid, %d invalid, %d blocking duplicates",
            len(report.valid_invoices), len(report.invalid_invoices),
            len(report.duplicates.blocking),
        )
        return report

    # ======================
    # Pipeline
    # ======================

    async def _run(self, run: _BatchRun) -> BatchResult:
        run.progress = 0
        run.processed_invoice_ids = []
        result = BatchResult(success=False, message="", total_invoices=len(run.invoice_ids))

        await self._report(run, result, 10, "Validating invoices...")
        active = max(await self.session_store.count_active(run.user_id) - 1, 0)
        report = await self.validate_batch(run.invoice_ids, run.user_id, active_sessions=active)
        result.valid_invoices = len(report.valid_invoices)
        result.invalid_invoices = len(report.invalid_invoices)
        result.warnings.extend(report.warnings)
        if not report.can_proceed:
            return self._reject_batch(result, report)

        await self._report(run, result, 20, "Fetching valid invoices...")
        batch = report.valid_invoices
        run.processed_invoice_ids = [entry.invoice.id for entry in batch]

        await self._report(run, result, 40, "Detecting operations...")
        detection = self.detection_engine.detect(batch, run.user_id)
        result.detected_operations = len(detection.detected)
        result.consolidated_operations = len(detection.consolidated)
        if not detection.success:
            result.message = detection.error_message or "Operation detection failed"
            result.errors.append(self.error_handler.handle(
                DetectionError(result.message), context="detection"
            ))
            return result

        await self._report(run, result, 60, "Validating operations for integration...")
        summary = self.integration_processor.validate_operations_for_integration(
            detection.consolidated
        )
        result.warnings.extend(summary.warnings)
        result.failed_operations = len(summary.invalid)
        if not summary.valid:
            result.message = "No operations eligible for integration"
            result.errors.append(self.error_handler.handle(
                IntegrationError(result.message, rejected=len(summary.invalid)),
                context="pre-integration check",
            ))
            return result

        if await self._is_cancelled(run):
            result.cancelled = True
            result.message = "Processing cancelled by user"
            logger.info("⏹️ Session %s cancelled before integration", run.session_id)
            return result

        await self._report(run, result, 80, "Integrating operations...")
        integration = await self.integration_processor.process_integration(summary.valid)
        result.created_operations = integration.successful
        result.failed_operations += len(integration.failed)
        result.errors.extend(p.error for p in integration.failed if p.error is not None)

        if integration.fatal_error is not None:
            result.errors.append(integration.fatal_error)
            result.message = f"Integration aborted: {integration.fatal_error.user_message}"
            return result
        if integration.successful == 0:
            result.message = "No operations were integrated"
            return result

        await self._report(run, result, 100, "Processing complete!")
        result.success = True
        result.message = (
            f"Processing complete! {integration.successful} operation(s) integrated, "
            f"{result.failed_operations} failed"
        )
        return result

    def _reject_batch(self, result: BatchResult, report: BatchValidationReport) -> BatchResult:
        for error in report.limits.errors:
            result.errors.append(self.error_handler.handle(
                InvoiceValidationError(error), context="batch limits"
            ))
        for invoice_id, reasons in report.invalid_invoices.items():
            result.errors.append(self.error_handler.handle(
                InvoiceValidationError(
                    f"Invoice {invoice_id}: {'; '.join(reasons)}", invoice_id=invoice_id
                ),
                context="invoice validation",
            ))
        for finding in report.duplicates.blocking:
            result.errors.append(self.error_handler.handle(
                DuplicateOperationError(finding.message, line_item_id=finding.line_item_id),
                context="duplicate detection",
            ))

        if not report.limits.is_valid:
            result.message = "Batch exceeds processing limits"
        elif report.duplicates.has_duplicates:
            result.message = "Duplicate operations detected"
        else:
            result.message = "No valid invoices to process"
        return result

    # ======================
    # Session & bookkeeping
    # ======================

    async def _report(self, run: _BatchRun, result: BatchResult, progress: int, message: str) -> None:
        run.progress = progress
        result.progress = progress
        logger.info("⏳ [%s] %d%% %s", run.session_id, progress, message)
        await self.session_store.update(run.session_id, progress, message)
        if run.callback is not None:
            run.callback(progress, message)

    async def _is_cancelled(self, run: _BatchRun) -> bool:
        session = await self.session_store.get(run.session_id)
        return session is not None and session.cancelled

    async def _stamp_invoices(self, invoice_ids: Sequence[int], result: BatchResult) -> None:
        """Record the batch outcome on every invoice that reached detection"""
        if not invoice_ids:
            return
        if result.cancelled:
            status = InvoiceProcessingStatus.CANCELLED
        elif result.success and result.failed_operations == 0:
            status = InvoiceProcessingStatus.SUCCESS
        elif result.success:
            status = InvoiceProcessingStatus.PARTIAL_SUCCESS
        else:
            status = InvoiceProcessingStatus.ERROR

        try:
            for invoice_id in invoice_ids:
                await self.uow.invoices.update_status(invoice_id, status, count_attempt=True)
            await self.uow.commit()
        except Exception:
            await self.uow.rollback()
            raise

    async def _finish_session(self, session_id: str, result: BatchResult) -> None:
        """Complete the session; a store failure is logged, never raised to the caller"""
        if result.cancelled:
            status = SessionStatus.CANCELLED
        elif result.success:
            status = SessionStatus.SUCCESS
        else:
            status = SessionStatus.ERROR
        critical = self.error_handler.has_critical_errors(result.errors)
        if critical:
            logger.error("🚨 Session %s finished with non-recoverable errors", session_id)
        try:
            await self.session_store.complete(session_id, status, result.message, summary={
                "total_invoices": result.total_invoices,
                "valid_invoices": result.valid_invoices,
                "invalid_invoices": result.invalid_invoices,
                "detected_operations": result.detected_operations,
                "consolidated_operations": result.consolidated_operations,
                "created_operations": result.created_operations,
                "failed_operations": result.failed_operations,
                "success_rate": round(result.overall_success_rate, 2),
                "critical_errors": critical,
            })
        except Exception as exc:
            error = self.error_handler.handle(exc, context="session completion")
            result.errors.append(error)
            result.error_report = self.error_handler.generate_error_report(result.errors)
