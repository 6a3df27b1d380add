"""
Domain Models - Results
Explicit outcome values for validation, integration and batch processing.
Recoverability travels with the error category instead of exception types.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .entities import LineItem, MappingType, Operation
from .pipeline import ConsolidatedOperation, InvoiceBatchEntry


class ErrorCategory(str, Enum):
    """Processing error categories"""
    VALIDATION = "VALIDATION"
    DUPLICATE = "DUPLICATE"
    DETECTION = "DETECTION"
    INTEGRATION = "INTEGRATION"
    DATABASE = "DATABASE"
    NETWORK = "NETWORK"
    SYSTEM = "SYSTEM"
    UNKNOWN = "UNKNOWN"


RECOVERABLE_CATEGORIES = frozenset({
    ErrorCategory.DETECTION,
    ErrorCategory.INTEGRATION,
    ErrorCategory.DATABASE,
    ErrorCategory.NETWORK,
})

# Recoverable only by re-running the whole batch
RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.DATABASE,
    ErrorCategory.NETWORK,
})


@dataclass(frozen=True)
class ProcessingError:
    """A categorized failure with its user-facing message"""
    category: ErrorCategory
    message: str
    user_message: str
    recoverable: bool
    retryable: bool = False
    context: dict[str, Any] = field(default_factory=dict)
    occurred_at: Optional[datetime] = None


@dataclass
class ErrorReport:
    """Aggregated error diagnostics for operators"""
    total_errors: int
    recoverable_errors: int
    non_recoverable_errors: int
    errors_by_category: dict[ErrorCategory, list[ProcessingError]]
    most_frequent_category: Optional[ErrorCategory]
    summary: str

    @property
    def error_rate(self) -> float:
        if self.total_errors == 0:
            return 0.0
        return self.non_recoverable_errors / self.total_errors * 100


# ======================
# Validation
# ======================

@dataclass
class InvoiceValidationResult:
    """
    Field validation of one invoice

    Item problems are kept per item; the invoice itself is invalid only on
    header errors or when no item passes.
    """
    invoice_id: Optional[int]
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)
    item_errors: dict[int, list[str]] = field(default_factory=dict)
    valid_items: list[LineItem] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def valid_item_count(self) -> int:
        return len(self.valid_items)


class DuplicateKind(str, Enum):
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    EXISTING_OPERATION = "EXISTING_OPERATION"
    SIMILAR_PRICE = "SIMILAR_PRICE"


@dataclass(frozen=True)
class DuplicateFinding:
    kind: DuplicateKind
    invoice_id: Optional[int]
    line_item_id: Optional[int]
    message: str
    blocking: bool = True


@dataclass
class DuplicateReport:
    findings: list[DuplicateFinding] = field(default_factory=list)

    @property
    def has_duplicates(self) -> bool:
        return any(finding.blocking for finding in self.findings)

    @property
    def blocking(self) -> list[DuplicateFinding]:
        return [finding for finding in self.findings if finding.blocking]

    @property
    def warnings(self) -> list[str]:
        return [finding.message for finding in self.findings if not finding.blocking]


@dataclass
class BatchLimitResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class ReprocessingResult:
    allowed: bool
    is_reprocessing: bool = False
    reasons: list[str] = field(default_factory=list)


@dataclass
class OperationValidationResult:
    operation: ConsolidatedOperation
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class ValidationSummary:
    """Pre-integration verdict over consolidated operations"""
    valid: list[ConsolidatedOperation] = field(default_factory=list)
    invalid: list[OperationValidationResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.invalid)

    @property
    def success_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return len(self.valid) / self.total * 100


@dataclass
class BatchValidationReport:
    """Everything the pre-detection validation pass found"""
    valid_invoices: list[InvoiceBatchEntry] = field(default_factory=list)
    invalid_invoices: dict[int, list[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    limits: BatchLimitResult = field(default_factory=BatchLimitResult)
    duplicates: DuplicateReport = field(default_factory=DuplicateReport)

    @property
    def can_proceed(self) -> bool:
        return (
            len(self.valid_invoices) > 0
            and self.limits.is_valid
            and not self.duplicates.has_duplicates
        )


# ======================
# Integration
# ======================

@dataclass(frozen=True)
class ProcessedOperation:
    """Outcome of integrating one consolidated operation"""
    consolidated: ConsolidatedOperation
    success: bool
    operation: Optional[Operation] = None
    created: bool = False
    mapping_type: Optional[MappingType] = None
    mappings_written: int = 0
    error: Optional[ProcessingError] = None


@dataclass
class IntegrationResult:
    created: list[ProcessedOperation] = field(default_factory=list)
    updated: list[ProcessedOperation] = field(default_factory=list)
    failed: list[ProcessedOperation] = field(default_factory=list)
    total_mappings: int = 0
    processing_time_ms: int = 0
    fatal_error: Optional[ProcessingError] = None

    @property
    def successful(self) -> int:
        return len(self.created) + len(self.updated)

    @property
    def success(self) -> bool:
        return self.fatal_error is None and self.successful > 0

    @property
    def success_rate(self) -> float:
        total = self.successful + len(self.failed)
        if total == 0:
            return 0.0
        return self.successful / total * 100


# ======================
# Batch
# ======================

@dataclass
class BatchResult:
    """Per-stage statistics of one orchestrator invocation"""
    success: bool
    message: str
    progress: int = 0
    total_invoices: int = 0
    valid_invoices: int = 0
    invalid_invoices: int = 0
    detected_operations: int = 0
    consolidated_operations: int = 0
    created_operations: int = 0
    failed_operations: int = 0
    processing_time_ms: int = 0
    cancelled: bool = False
    session_id: Optional[str] = None
    errors: list[ProcessingError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error_report: Optional[ErrorReport] = None

    @property
    def overall_success_rate(self) -> float:
        attempted = self.created_operations + self.failed_operations
        if attempted == 0:
            return 0.0
        return self.created_operations / attempted * 100


@dataclass(frozen=True)
class PositionSummary:
    """Portfolio-level totals over a set of positions"""
    open_positions: int
    partial_positions: int
    closed_positions: int
    total_invested_value: Decimal
    total_realized_profit: Decimal
    total_realized_profit_percentage: Decimal
    long_positions: int
    short_positions: int
