"""
ERROR HANDLER
Turns exceptions into categorized ProcessingError values

RULES:
✅ Domain exceptions carry their own category
✅ Database/network failures are recoverable and retryable
❌ SYSTEM and UNKNOWN failures are never retried
"""

import logging
from collections import Counter
from typing import Optional, Sequence

from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from app.domain.errors import ProcessingException
from app.domain.models import (
    RECOVERABLE_CATEGORIES,
    RETRYABLE_CATEGORIES,
    ErrorCategory,
    ErrorReport,
    ProcessingError,
)
from app.utils.time import now_local_naive

logger = logging.getLogger(__name__)

# Fallback classification of foreign exceptions by message content
_KEYWORDS = (
    (ErrorCategory.VALIDATION, ("validation",)),
    (ErrorCategory.DUPLICATE, ("duplicate",)),
    (ErrorCategory.DETECTION, ("detection",)),
    (ErrorCategory.INTEGRATION, ("integration",)),
    (ErrorCategory.DATABASE, ("database", "sql", "constraint", "foreign key")),
    (ErrorCategory.NETWORK, ("connection", "timeout", "network")),
    (ErrorCategory.SYSTEM, ("system", "memory")),
)

_USER_MESSAGES = {
    ErrorCategory.DUPLICATE: "Duplicate invoice or operation detected",
    ErrorCategory.DATABASE: "Database error. Please try again.",
    ErrorCategory.NETWORK: "Connection error. Check your connection and try again.",
    ErrorCategory.SYSTEM: "System error. Please try again in a few minutes.",
}

_USER_PREFIXES = {
    ErrorCategory.VALIDATION: "Validation error",
    ErrorCategory.DETECTION: "Operation detection error",
    ErrorCategory.INTEGRATION: "Operation integration error",
    ErrorCategory.UNKNOWN: "Unexpected error",
}


class ErrorHandler:
    """Categorizes failures and aggregates them into reports"""

    def categorize(self, error: BaseException) -> ErrorCategory:
        if isinstance(error, ProcessingException):
            return error.category
        if isinstance(error, DBAPIError) and error.connection_invalidated:
            return ErrorCategory.NETWORK
        if isinstance(error, SQLAlchemyError):
            return ErrorCategory.DATABASE
        if isinstance(error, (ConnectionError, TimeoutError)):
            return ErrorCategory.NETWORK
        if isinstance(error, MemoryError):
            return ErrorCategory.SYSTEM

        message = str(error).lower()
        for category, keywords in _KEYWORDS:
            if any(keyword in message for keyword in keywords):
                return category
        return ErrorCategory.UNKNOWN

    def handle(self, error: BaseException, context: str = "") -> ProcessingError:
        """
        Categorize one exception

        Args:
            error: The failure
            context: Where it happened (logged and kept on the error)

        Returns:
            ProcessingError with user message and recoverability flags
        """
        category = self.categorize(error)
        recoverable = category in RECOVERABLE_CATEGORIES
        details = dict(getattr(error, "context", {}) or {})
        if context:
            details["context"] = context

        logger.error("❌ Error in '%s': %s", context or "processing", error)
        logger.info("🔧 Categorized as %s (recoverable: %s)", category.value, recoverable)

        return ProcessingError(
            category=category,
            message=str(error) or type(error).__name__,
            user_message=self._user_message(error, category),
            recoverable=recoverable,
            retryable=category in RETRYABLE_CATEGORIES,
            context=details,
            occurred_at=now_local_naive(),
        )

    def handle_errors(self, errors: Sequence[BaseException], context: str = "") -> list[ProcessingError]:
        logger.info("🔧 Handling %d errors in '%s'", len(errors), context or "processing")
        handled = [self.handle(error, context) for error in errors]
        recoverable = sum(1 for error in handled if error.recoverable)
        logger.info(
            "📊 Error summary: %d recoverable, %d non-recoverable",
            recoverable, len(handled) - recoverable,
        )
        return handled

    def has_critical_errors(self, errors: Sequence[ProcessingError]) -> bool:
        return any(not error.recoverable for error in errors)

    def generate_error_report(self, errors: Sequence[ProcessingError]) -> ErrorReport:
        by_category: dict[ErrorCategory, list[ProcessingError]] = {}
        for error in errors:
            by_category.setdefault(error.category, []).append(error)

        recoverable = sum(1 for error in errors if error.recoverable)
        most_frequent: Optional[ErrorCategory] = None
        if errors:
            most_frequent = Counter(error.category for error in errors).most_common(1)[0][0]

        if not errors:
            summary = "No errors"
        else:
            parts = ", ".join(
                f"{category.value}: {len(items)}" for category, items in by_category.items()
            )
            summary = f"{len(errors)} error(s) ({parts})"

        return ErrorReport(
            total_errors=len(errors),
            recoverable_errors=recoverable,
            non_recoverable_errors=len(errors) - recoverable,
            errors_by_category=by_category,
            most_frequent_category=most_frequent,
            summary=summary,
        )

    @staticmethod
    def _user_message(error: BaseException, category: ErrorCategory) -> str:
        if category in _USER_MESSAGES:
            return _USER_MESSAGES[category]
        return f"{_USER_PREFIXES[category]}: {error}"
