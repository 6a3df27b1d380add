"""
Tests for the pre-detection and pre-integration validation suite
"""

import pytest
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal

from app.domain.models import (
    ClassifiedOperation,
    ConsolidatedOperation,
    DetectedOperation,
    DuplicateKind,
    Invoice,
    InvoiceBatchEntry,
    InvoiceProcessingStatus,
    LineItem,
    MappingType,
    Operation,
    OperationStatus,
    Side,
    SourceMapping,
    TradeType,
)
from app.domain.services.batch_limit_validator import BatchLimitValidator
from app.domain.services.duplicate_detection_service import DuplicateDetectionService
from app.domain.services.invoice_validation_service import (
    InvoiceValidationService,
    years_before,
)
from app.domain.services.operation_validation_service import OperationValidationService
from app.domain.services.reprocessing_validation_service import ReprocessingValidationService
from tests.fakes import InMemoryUnitOfWork

TODAY = date(2025, 6, 2)


def _invoice(invoice_id=1, number="NF-1", trading_date=date(2025, 6, 2), **overrides):
    fields = dict(
        invoice_number=number,
        trading_date=trading_date,
        brokerage="Clear",
        user_id="user-1",
        id=invoice_id,
    )
    fields.update(overrides)
    return Invoice(**fields)


def _item(seq, qty=100, price="10.00", side="C", asset="XYZ11", total=None, item_id=None,
          invoice_id=1, trade_date=None):
    unit_price = Decimal(price)
    return LineItem(
        sequence_number=seq,
        asset_code=asset,
        operation_type=side,
        quantity=qty,
        unit_price=unit_price,
        total_value=Decimal(total) if total is not None else unit_price * qty,
        trade_date=trade_date,
        invoice_id=invoice_id,
        id=item_id if item_id is not None else invoice_id * 100 + seq,
    )


def _entry(invoice, items):
    return InvoiceBatchEntry(invoice=invoice, items=tuple(items))


# ======================
# InvoiceValidationService
# ======================

@pytest.fixture()
def invoice_validator():
    return InvoiceValidationService(clock=lambda: TODAY)


def test_valid_invoice_passes(invoice_validator):
    result = invoice_validator.validate(_invoice(), [_item(1), _item(2, side="V", price="10.50")])

    assert result.is_valid
    assert result.valid_item_count == 2
    assert result.infos == ["Possible Day Trade for asset XYZ11"]


def test_header_errors(invoice_validator):
    invoice = _invoice(number=" ", brokerage="", trading_date=date(2025, 6, 3))

    result = invoice_validator.validate(invoice, [_item(1)])

    assert not result.is_valid
    assert "Invoice number is required" in result.errors
    assert "Brokerage is required" in result.errors
    assert any("in the future" in error for error in result.errors)


def test_too_old_invoice(invoice_validator):
    result = invoice_validator.validate(_invoice(trading_date=date(2020, 6, 1)), [_item(1)])

    assert any("older than 5 years" in error for error in result.errors)


def test_invoice_without_items(invoice_validator):
    result = invoice_validator.validate(_invoice(), [])
    assert result.errors == ["Invoice has no line items"]


def test_bad_items_are_kept_per_item(invoice_validator):
    items = [
        _item(1),
        _item(2, qty=0, total="0.01"),
        _item(3, total="999.00"),
        _item(4, side="X"),
    ]

    result = invoice_validator.validate(_invoice(), items)

    assert result.is_valid
    assert [item.sequence_number for item in result.valid_items] == [1]
    assert set(result.item_errors) == {2, 3, 4}
    assert result.item_errors[2] == ["quantity must be positive"]
    assert "does not match" in result.item_errors[3][0]
    assert result.item_errors[4] == ["invalid operation type 'X'"]
    assert any(warning.startswith("Item 3:") for warning in result.warnings)


def test_all_items_invalid_rejects_invoice(invoice_validator):
    result = invoice_validator.validate(_invoice(), [_item(1, price="0.001", total="0.10")])

    assert result.errors == ["Invoice has no valid line items"]


def test_value_within_tolerance_is_accepted(invoice_validator):
    assert invoice_validator.validate_item(_item(1, total="1000.04")) == []


def test_price_spread_warning(invoice_validator):
    warnings, infos = invoice_validator.analyze_items([
        _item(1, price="1.00"),
        _item(2, price="1.60"),
    ])

    assert len(warnings) == 1
    assert "above 50%" in warnings[0]
    assert infos == []


def test_years_before_leap_day():
    assert years_before(date(2024, 2, 29), 1) == date(2023, 2, 28)


# ======================
# BatchLimitValidator
# ======================

def test_batch_limits_ok():
    validator = BatchLimitValidator(max_invoices=10, max_items=100)
    result = validator.validate([_entry(_invoice(), [_item(1)])])

    assert result.is_valid
    assert result.warnings == []


def test_batch_limits_reject_every_ceiling():
    validator = BatchLimitValidator(
        max_invoices=1,
        max_items=2,
        max_items_per_invoice=1,
        max_total_value=Decimal("100"),
        max_active_sessions=1,
    )
    batch = [
        _entry(_invoice(1, "NF-1"), [_item(1), _item(2)]),
        _entry(_invoice(2, "NF-2"), [_item(1, invoice_id=2)]),
    ]

    result = validator.validate(batch, active_sessions=1)

    assert not result.is_valid
    assert len(result.errors) == 5


def test_batch_limits_warn_near_ceiling():
    validator = BatchLimitValidator(max_invoices=1, max_total_value=Decimal("1200"))
    result = validator.validate([_entry(_invoice(), [_item(1)])])

    assert result.is_valid
    assert len(result.warnings) == 2


def test_empty_batch_is_rejected():
    assert BatchLimitValidator().validate([]).errors == ["Batch is empty"]


# ======================
# ReprocessingValidationService
# ======================

NOW = datetime(2025, 6, 2, 12, 0)


def test_first_processing_is_allowed():
    service = ReprocessingValidationService(clock=lambda: NOW)
    result = service.check(_invoice(), [_item(1)], "user-1")

    assert result.allowed
    assert not result.is_reprocessing


def test_foreign_or_empty_invoice_is_refused():
    service = ReprocessingValidationService(clock=lambda: NOW)
    result = service.check(_invoice(), [], "user-2")

    assert not result.allowed
    assert len(result.reasons) == 2


def test_reprocessing_limits():
    service = ReprocessingValidationService(max_attempts=3, min_interval_hours=1, clock=lambda: NOW)
    invoice = _invoice(
        processing_status=InvoiceProcessingStatus.ERROR,
        processing_attempts=3,
        updated_at=NOW - timedelta(minutes=10),
    )

    result = service.check(invoice, [_item(1)], "user-1")

    assert result.is_reprocessing
    assert not result.allowed
    assert len(result.reasons) == 2


def test_reprocessing_after_interval_is_allowed():
    service = ReprocessingValidationService(max_attempts=3, min_interval_hours=1, clock=lambda: NOW)
    invoice = _invoice(
        processing_status=InvoiceProcessingStatus.ERROR,
        processing_attempts=1,
        updated_at=NOW - timedelta(hours=2),
    )

    result = service.check(invoice, [_item(1)], "user-1")

    assert result.allowed
    assert result.is_reprocessing


# ======================
# DuplicateDetectionService
# ======================

@pytest.fixture()
def uow():
    return InMemoryUnitOfWork()


@pytest.fixture()
def duplicates(uow):
    return DuplicateDetectionService(
        uow.source_mappings, uow.operations, price_threshold=Decimal("0.01")
    )


@pytest.mark.asyncio
async def test_already_processed_item_blocks(uow, duplicates):
    invoice = _invoice()
    item = _item(1)
    await uow.source_mappings.create(SourceMapping(
        operation_id=99,
        invoice_id=invoice.id,
        line_item_id=item.id,
        mapping_type=MappingType.NEW_OPERATION,
        processing_sequence=1,
    ))

    report = await duplicates.check([_entry(invoice, [item])], "user-1")

    assert report.has_duplicates
    assert report.findings[0].kind == DuplicateKind.ALREADY_PROCESSED


@pytest.mark.asyncio
async def test_existing_operation_with_similar_price_blocks(uow, duplicates):
    await uow.operations.create(Operation(
        user_id="user-1",
        asset_code="XYZ11",
        side=Side.BUY,
        trade_type=TradeType.SWING,
        status=OperationStatus.ACTIVE,
        entry_date=date(2025, 6, 2),
        quantity=100,
        entry_unit_price=Decimal("10.005"),
        entry_total_value=Decimal("1000.50"),
    ))

    report = await duplicates.check([_entry(_invoice(), [_item(1)])], "user-1")

    assert report.has_duplicates
    assert report.findings[0].kind == DuplicateKind.EXISTING_OPERATION


@pytest.mark.asyncio
async def test_existing_operation_at_other_price_does_not_block(uow, duplicates):
    await uow.operations.create(Operation(
        user_id="user-1",
        asset_code="XYZ11",
        side=Side.BUY,
        trade_type=TradeType.SWING,
        status=OperationStatus.ACTIVE,
        entry_date=date(2025, 6, 2),
        quantity=100,
        entry_unit_price=Decimal("11.00"),
        entry_total_value=Decimal("1100.00"),
    ))

    report = await duplicates.check([_entry(_invoice(), [_item(1)])], "user-1")

    assert not report.has_duplicates
    assert report.findings == []


@pytest.mark.asyncio
async def test_partial_fills_in_one_invoice_only_warn(duplicates):
    batch = [_entry(_invoice(), [_item(1, qty=100), _item(2, qty=100)])]

    report = await duplicates.check(batch, "user-1")

    assert not report.has_duplicates
    assert len(report.warnings) == 1


@pytest.mark.asyncio
async def test_same_fill_on_two_invoices_blocks(duplicates):
    batch = [
        _entry(_invoice(1, "NF-1"), [_item(1)]),
        _entry(_invoice(2, "NF-2"), [_item(1, invoice_id=2)]),
    ]

    report = await duplicates.check(batch, "user-1")

    assert report.has_duplicates
    [finding] = report.blocking
    assert finding.kind == DuplicateKind.SIMILAR_PRICE
    assert finding.invoice_id == 2


@pytest.mark.asyncio
async def test_different_quantities_across_invoices_only_warn(duplicates):
    batch = [
        _entry(_invoice(1, "NF-1"), [_item(1, qty=100)]),
        _entry(_invoice(2, "NF-2"), [_item(1, qty=50, invoice_id=2)]),
    ]

    report = await duplicates.check(batch, "user-1")

    assert not report.has_duplicates
    assert len(report.warnings) == 1


# ======================
# OperationValidationService
# ======================

def _consolidated(qty=100, unit_price="10.00", total="1000.00", confidence="0.9", ready=True,
                  trade_date=date(2025, 6, 2)):
    item = _item(1, qty=qty)
    detected = DetectedOperation(
        user_id="user-1",
        invoice_id=1,
        asset_code="XYZ11",
        side=Side.BUY,
        quantity=qty,
        unit_price=Decimal(unit_price),
        total_value=Decimal(total),
        trade_date=trade_date,
        confidence=Decimal(confidence),
        reason="test",
        source_items=(item,),
    )
    classified = ClassifiedOperation(
        detected=detected,
        trade_type=TradeType.SWING,
        confidence=Decimal(confidence),
        reason="test",
    )
    return ConsolidatedOperation(
        user_id="user-1",
        asset_code="XYZ11",
        side=Side.BUY,
        trade_type=TradeType.SWING,
        trade_date=trade_date,
        quantity=qty,
        unit_price=Decimal(unit_price),
        total_value=Decimal(total),
        confidence=Decimal(confidence),
        sources=(classified,),
        confirmed=Decimal(confidence) >= Decimal("0.8"),
        ready_for_creation=ready,
        reason="single operation",
    )


def test_operation_validation_passes():
    result = OperationValidationService().validate(_consolidated())
    assert result.is_valid
    assert result.warnings == []


def test_operation_validation_errors():
    operation = replace(_consolidated(total="1200.00", ready=False), trade_date=None)

    result = OperationValidationService().validate(operation)

    assert not result.is_valid
    assert "Trade date is required" in result.errors
    assert any("not ready for creation" in error for error in result.errors)
    assert any("does not match" in error for error in result.errors)


def test_operation_validation_warnings():
    operation = _consolidated(qty=20_000, unit_price="100.00", total="2000000.00", confidence="0.7")

    result = OperationValidationService().validate(operation)

    assert result.is_valid
    assert len(result.warnings) == 3


def test_operation_validation_allows_unit_price_rounding():
    # 15230.00 / 15000 quantized to four decimals
    rounded = _consolidated(qty=15_000, unit_price="1.0153", total="15230.00")
    off = _consolidated(qty=15_000, unit_price="1.0153", total="15231.00")

    service = OperationValidationService()

    assert service.validate(rounded).is_valid
    assert not service.validate(off).is_valid
