"""
Domain Models Package
Export all domain entities
"""

from .entities import (
    # Enums
    ExitStrategy,
    GroupStatus,
    InvoiceProcessingStatus,
    MappingType,
    OperationRole,
    OperationStatus,
    PositionStatus,
    Side,
    TradeType,

    # Entities
    EntryLot,
    ExitRecord,
    Invoice,
    LineItem,
    Operation,
    OperationGroup,
    OperationGroupItem,
    Position,
    SourceMapping,
    parse_side,
)
from .pipeline import (
    ClassifiedOperation,
    ConsolidatedOperation,
    DetectedOperation,
    DetectionResult,
    InvoiceBatchEntry,
    TradePattern,
)
from .results import (
    RECOVERABLE_CATEGORIES,
    RETRYABLE_CATEGORIES,
    BatchLimitResult,
    BatchResult,
    BatchValidationReport,
    DuplicateFinding,
    DuplicateKind,
    DuplicateReport,
    ErrorCategory,
    ErrorReport,
    IntegrationResult,
    InvoiceValidationResult,
    OperationValidationResult,
    PositionSummary,
    ProcessedOperation,
    ProcessingError,
    ReprocessingResult,
    ValidationSummary,
)

__all__ = [
    # Enums
    "ErrorCategory",
    "ExitStrategy",
    "GroupStatus",
    "InvoiceProcessingStatus",
    "MappingType",
    "OperationRole",
    "OperationStatus",
    "PositionStatus",
    "Side",
    "TradeType",
    "DuplicateKind",

    # Entities
    "EntryLot",
    "ExitRecord",
    "Invoice",
    "LineItem",
    "Operation",
    "OperationGroup",
    "OperationGroupItem",
    "Position",
    "SourceMapping",
    "parse_side",

    # Pipeline
    "ClassifiedOperation",
    "ConsolidatedOperation",
    "DetectedOperation",
    "DetectionResult",
    "InvoiceBatchEntry",
    "TradePattern",

    # Results
    "RECOVERABLE_CATEGORIES",
    "RETRYABLE_CATEGORIES",
    "BatchLimitResult",
    "BatchResult",
    "BatchValidationReport",
    "DuplicateFinding",
    "DuplicateReport",
    "ErrorReport",
    "IntegrationResult",
    "InvoiceValidationResult",
    "OperationValidationResult",
    "PositionSummary",
    "ProcessedOperation",
    "ProcessingError",
    "ReprocessingResult",
    "ValidationSummary",
]
