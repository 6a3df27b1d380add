"""
Domain exceptions

Each exception carries the ErrorCategory the error handler reports it under.
"""

from app.domain.models import ErrorCategory


class ProcessingException(Exception):
    """Base class for failures raised by the processing core"""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class InvoiceValidationError(ProcessingException):
    category = ErrorCategory.VALIDATION


class DuplicateOperationError(ProcessingException):
    category = ErrorCategory.DUPLICATE


class DetectionError(ProcessingException):
    category = ErrorCategory.DETECTION


class IntegrationError(ProcessingException):
    category = ErrorCategory.INTEGRATION


class LotAccountingError(IntegrationError):
    """Lot state would break an accounting invariant"""


class SessionNotFoundError(ProcessingException):
    category = ErrorCategory.VALIDATION
