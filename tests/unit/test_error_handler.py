"""
Unit Tests for ErrorHandler

✅ Category resolution order
✅ User messages and recoverability flags
✅ Aggregated reports
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.domain.errors import (
    DetectionError,
    DuplicateOperationError,
    InvoiceValidationError,
    LotAccountingError,
)
from app.domain.models import ErrorCategory
from app.domain.services.error_handler import ErrorHandler


@pytest.fixture()
def handler():
    return ErrorHandler()


@pytest.mark.parametrize("error,expected", [
    (InvoiceValidationError("bad header"), ErrorCategory.VALIDATION),
    (DuplicateOperationError("seen before"), ErrorCategory.DUPLICATE),
    (DetectionError("nothing found"), ErrorCategory.DETECTION),
    (LotAccountingError("too many"), ErrorCategory.INTEGRATION),
    (IntegrityError("INSERT", {}, Exception("unique")), ErrorCategory.DATABASE),
    (ConnectionError("reset by peer"), ErrorCategory.NETWORK),
    (TimeoutError(), ErrorCategory.NETWORK),
    (MemoryError(), ErrorCategory.SYSTEM),
    (ValueError("foreign key violated"), ErrorCategory.DATABASE),
    (RuntimeError("validation went wrong"), ErrorCategory.VALIDATION),
    (RuntimeError("boom"), ErrorCategory.UNKNOWN),
])
def test_categorize(handler, error, expected):
    assert handler.categorize(error) == expected


def test_invalidated_connection_is_network(handler):
    error = OperationalError("SELECT 1", {}, Exception("server closed"), connection_invalidated=True)
    assert handler.categorize(error) == ErrorCategory.NETWORK


def test_handle_database_error(handler):
    error = handler.handle(OperationalError("SELECT 1", {}, Exception("locked")), context="commit")

    assert error.category == ErrorCategory.DATABASE
    assert error.user_message == "Database error. Please try again."
    assert error.recoverable
    assert error.retryable
    assert error.context["context"] == "commit"
    assert error.occurred_at is not None


def test_handle_keeps_exception_context(handler):
    error = handler.handle(LotAccountingError("Exit too large", available=10))

    assert error.user_message == "Operation integration error: Exit too large"
    assert error.recoverable
    assert not error.retryable
    assert error.context == {"available": 10}


def test_handle_unknown(handler):
    error = handler.handle(RuntimeError("boom"))

    assert error.user_message == "Unexpected error: boom"
    assert not error.recoverable
    assert handler.has_critical_errors([error])


def test_validation_is_not_recoverable(handler):
    error = handler.handle(InvoiceValidationError("no items"))
    assert error.user_message == "Validation error: no items"
    assert not error.recoverable


def test_error_report(handler):
    errors = handler.handle_errors([
        DetectionError("a"),
        DetectionError("b"),
        RuntimeError("c"),
    ])

    report = handler.generate_error_report(errors)

    assert report.total_errors == 3
    assert report.recoverable_errors == 2
    assert report.non_recoverable_errors == 1
    assert report.most_frequent_category == ErrorCategory.DETECTION
    assert report.summary == "3 error(s) (DETECTION: 2, UNKNOWN: 1)"
    assert report.error_rate == pytest.approx(33.333, rel=1e-3)


def test_empty_error_report(handler):
    report = handler.generate_error_report([])

    assert report.summary == "No errors"
    assert report.most_frequent_category is None
    assert report.error_rate == 0.0
