"""
Unit Tests for the detection pipeline

✅ Pattern detector scoring and skipping
✅ Day/swing classification signals
✅ Consolidation by (asset, side, trade type, date)
✅ DetectionEngine over invoice batches
"""

import logging

import pytest
from dataclasses import replace
from datetime import date
from decimal import Decimal

from app.domain.models import (
    DetectedOperation,
    Invoice,
    InvoiceBatchEntry,
    LineItem,
    Side,
    TradeType,
    ClassifiedOperation,
)
from app.domain.services.detection_engine import DetectionEngine
from app.domain.services.integration_processor import IntegrationProcessor
from app.domain.services.operation_consolidator import OperationConsolidator
from app.domain.services.pattern_detector import (
    PatternDetector,
    SameDayRoundTripHook,
    is_structurally_valid,
)
from app.domain.services.type_classifier import TypeClassifier, has_day_trade_marker
from tests.fakes import InMemoryUnitOfWork


DAY_1 = date(2025, 3, 10)
DAY_2 = date(2025, 3, 11)


def _item(seq, asset="XYZ11", side="C", qty=100, price="10.00", trade_date=DAY_1,
          item_id=None, day_trade=False, observations=None, total=None):
    unit_price = Decimal(price) if price is not None else None
    if total is None and unit_price is not None and qty is not None:
        total = unit_price * qty
    return LineItem(
        sequence_number=seq,
        asset_code=asset,
        operation_type=side,
        quantity=qty,
        unit_price=unit_price,
        total_value=Decimal(total) if total is not None else None,
        trade_date=trade_date,
        is_day_trade=day_trade,
        observations=observations,
        invoice_id=1,
        id=item_id if item_id is not None else seq,
    )


def _detected(side=Side.BUY, qty=100, total="1000", confidence="0.9", notes="",
              trade_date=DAY_1, item=None, asset="XYZ11"):
    return DetectedOperation(
        user_id="user-1",
        invoice_id=1,
        asset_code=asset,
        side=side,
        quantity=qty,
        unit_price=Decimal(total) / qty,
        total_value=Decimal(total),
        trade_date=trade_date,
        confidence=Decimal(confidence),
        reason="test",
        source_items=(item or _item(1, qty=qty),),
        notes=notes,
    )


# ======================
# PatternDetector
# ======================

def test_structural_validity_rules():
    assert is_structurally_valid(_item(1))
    assert not is_structurally_valid(_item(1, asset="  "))
    assert not is_structurally_valid(_item(1, side="X"))
    assert not is_structurally_valid(_item(1, qty=0))
    assert not is_structurally_valid(_item(1, price="0"))
    assert not is_structurally_valid(_item(1, price=None))


def test_detect_one_operation_per_valid_item():
    detector = PatternDetector()
    items = [
        _item(1, asset="xyz11", side="COMPRA"),
        _item(2, side="V", qty=50),
        _item(3, qty=-5),
    ]

    detected = detector.detect(items, user_id="user-1", invoice_id=7)

    assert len(detected) == 2
    assert detected[0].asset_code == "XYZ11"
    assert detected[0].side == Side.BUY
    assert detected[0].invoice_id == 7
    assert detected[1].side == Side.SELL
    assert detected[1].quantity == 50


def test_detect_confidence_is_capped():
    detector = PatternDetector()
    [operation] = detector.detect([_item(1, day_trade=True)], user_id="user-1")

    assert operation.confidence == Decimal("1.0")
    assert "valid price" in operation.reason
    assert operation.notes == "Day Trade"


def test_detect_uses_default_date_and_derives_total():
    detector = PatternDetector()
    item = _item(1, trade_date=None, qty=3, price="2.50")
    item = replace(item, total_value=None)

    [operation] = detector.detect([item], user_id="user-1", default_trade_date=DAY_2)

    assert operation.trade_date == DAY_2
    assert operation.total_value == Decimal("7.50")


def test_detect_skips_malformed_items_without_raising():
    detector = PatternDetector()
    broken = _item(1)
    object.__setattr__(broken, "quantity", "many")

    detected = detector.detect([broken, _item(2)], user_id="user-1")

    assert [op.source_items[0].sequence_number for op in detected] == [2]


def test_notes_include_observations():
    detector = PatternDetector()
    [operation] = detector.detect([_item(1, observations=" D ")], user_id="user-1")
    assert operation.notes == "Obs: D"


def test_same_day_hook_pairs_opposite_sides():
    hook = SameDayRoundTripHook()
    items = [
        _item(1, side="C", qty=100),
        _item(2, side="V", qty=60),
        _item(3, asset="ABC3", side="C", qty=10),
        _item(4, side="V", qty=40, trade_date=DAY_2),
    ]

    [pattern] = hook.find_patterns(items)

    assert pattern.trade_type == TradeType.DAY
    assert pattern.asset_code == "XYZ11"
    assert pattern.buy_quantity == 100
    assert pattern.sell_quantity == 60
    assert pattern.matched_quantity == 60
    assert pattern.line_item_ids == frozenset({1, 2})


# ======================
# TypeClassifier
# ======================

@pytest.mark.parametrize("text,expected", [
    ("Day Trade", True),
    ("Obs: D", True),
    ("DT", True),
    ("DAYTRADE", True),
    ("Obs: DIVIDEND", False),
    ("", False),
    (None, False),
])
def test_day_trade_marker(text, expected):
    assert has_day_trade_marker(text) is expected


def test_marker_classifies_as_day():
    classifier = TypeClassifier(use_same_day_signal=False)
    classified = classifier.classify(_detected(notes="Day Trade", confidence="0.7"))

    assert classified.trade_type == TradeType.DAY
    assert classified.confidence == Decimal("0.9")
    assert "DAY" in classified.reason


def test_default_is_swing():
    classifier = TypeClassifier(use_same_day_signal=False)
    classified = classifier.classify(_detected(confidence="0.7"))

    assert classified.trade_type == TradeType.SWING
    assert classified.confidence == Decimal("0.8")


def test_same_day_signal_only_when_enabled():
    item = _item(1, item_id=42)
    detected = _detected(item=item, confidence="0.7")

    enabled = TypeClassifier(use_same_day_signal=True).classify(detected, frozenset({42}))
    disabled = TypeClassifier(use_same_day_signal=False).classify(detected, frozenset({42}))

    assert enabled.trade_type == TradeType.DAY
    assert enabled.confidence == Decimal("0.8")
    assert disabled.trade_type == TradeType.SWING


def test_classification_is_deterministic():
    classifier = TypeClassifier(use_same_day_signal=True)
    detected = _detected(notes="Obs: DT")
    assert classifier.classify(detected) == classifier.classify(detected)


# ======================
# OperationConsolidator
# ======================

def _classified(qty, total, confidence="0.7", trade_type=TradeType.SWING, side=Side.BUY,
                trade_date=DAY_1, notes="", seq=1):
    detected = _detected(
        side=side, qty=qty, total=total, confidence=confidence,
        notes=notes, trade_date=trade_date, item=_item(seq, qty=qty),
    )
    return ClassifiedOperation(
        detected=detected,
        trade_type=trade_type,
        confidence=Decimal(confidence),
        reason="test",
    )


def test_consolidate_weighted_average_and_bonus():
    consolidator = OperationConsolidator()
    members = [
        _classified(100, "100.00", confidence="0.6", notes="Day Trade", seq=1),
        _classified(200, "212.00", confidence="0.6", notes="Day Trade", seq=2),
    ]

    [operation] = consolidator.consolidate(members)

    assert operation.quantity == 300
    assert operation.total_value == Decimal("312.00")
    assert operation.unit_price == Decimal("1.0400")
    assert operation.confidence == Decimal("0.8")
    assert operation.confirmed is True
    assert operation.ready_for_creation is True
    assert operation.reason == "Consolidated 2 operations of same asset/type/date"
    assert operation.notes == "Day Trade"
    assert [item.sequence_number for item in operation.source_items] == [1, 2]


def test_consolidate_keeps_distinct_keys_apart():
    consolidator = OperationConsolidator()
    members = [
        _classified(100, "1000", seq=1),
        _classified(100, "1000", side=Side.SELL, seq=2),
        _classified(100, "1000", trade_type=TradeType.DAY, seq=3),
        _classified(100, "1000", trade_date=DAY_2, seq=4),
    ]

    consolidated = consolidator.consolidate(members)

    assert len(consolidated) == 4
    assert all(op.reason == "single operation" for op in consolidated)


def test_single_low_confidence_operation_is_not_ready():
    consolidator = OperationConsolidator()
    [operation] = consolidator.consolidate([_classified(10, "100", confidence="0.4")])

    assert operation.confidence == Decimal("0.5")
    assert operation.confirmed is False
    assert operation.ready_for_creation is False


def test_member_bonus_is_capped():
    consolidator = OperationConsolidator()
    members = [_classified(10, "100", confidence="0.5", seq=i) for i in range(1, 6)]

    [operation] = consolidator.consolidate(members)

    assert operation.confidence == Decimal("0.8")


# ======================
# DetectionEngine
# ======================

def _entry(invoice_id, trading_date, items):
    invoice = Invoice(
        invoice_number=f"NF-{invoice_id}",
        trading_date=trading_date,
        brokerage="Broker",
        user_id="user-1",
        id=invoice_id,
    )
    return InvoiceBatchEntry(invoice=invoice, items=tuple(items))


def _raw_item(seq, side="C", qty=100, price="1.03", item_id=None, invoice_id=None, trade_date=None):
    return LineItem(
        sequence_number=seq,
        asset_code="XYZ11",
        operation_type=side,
        quantity=qty,
        unit_price=Decimal(price),
        total_value=Decimal(price) * qty,
        trade_date=trade_date,
        invoice_id=invoice_id,
        id=item_id,
    )


def test_engine_orders_by_trade_date_then_invoice_then_sequence():
    engine = DetectionEngine(
        detector=PatternDetector(),
        classifier=TypeClassifier(use_same_day_signal=False),
    )
    batch = [
        _entry(2, DAY_2, [_raw_item(1, side="V", qty=75, price="1.73", item_id=20)]),
        _entry(1, DAY_1, [_raw_item(1, qty=300, item_id=10)]),
    ]

    result = engine.detect(batch, user_id="user-1")

    assert result.success is True
    assert result.total_invoices == 2
    assert result.total_items == 2
    assert [op.side for op in result.consolidated] == [Side.BUY, Side.SELL]
    assert result.consolidated[0].trade_date == DAY_1
    assert result.consolidated[0].invoice_ids == [1]
    assert result.detection_rate == 100.0
    assert result.type_distribution == {"BUY": 1, "SELL": 1}
    assert result.consolidation_rate == 100.0


def test_engine_marks_same_day_round_trip_as_day(caplog):
    caplog.set_level(logging.INFO, logger="app.domain.services.detection_engine")
    engine = DetectionEngine(
        detector=PatternDetector(hooks=[SameDayRoundTripHook()]),
        classifier=TypeClassifier(use_same_day_signal=True),
    )
    batch = [_entry(1, DAY_1, [
        _raw_item(1, qty=100, item_id=1),
        _raw_item(2, side="V", qty=100, price="1.10", item_id=2),
    ])]

    result = engine.detect(batch, user_id="user-1")

    assert {op.trade_type for op in result.consolidated} == {TradeType.DAY}
    assert len(result.patterns) == 1
    assert "DAY round trip on XYZ11" in caplog.text
    assert "100 units matched" in caplog.text


def test_engine_fails_without_items():
    engine = DetectionEngine()
    result = engine.detect([_entry(1, DAY_1, [])], user_id="user-1")

    assert result.success is False
    assert result.error_message == "No line items found in the selected invoices"


def test_engine_fails_when_nothing_detected():
    engine = DetectionEngine()
    result = engine.detect([_entry(1, DAY_1, [_raw_item(1, qty=0, item_id=1)])], user_id="user-1")

    assert result.success is False
    assert result.error_message == "No valid operations detected"


def test_large_multi_fill_merge_passes_integration_check():
    engine = DetectionEngine(
        detector=PatternDetector(),
        classifier=TypeClassifier(use_same_day_signal=False),
    )
    batch = [_entry(1, DAY_1, [
        _raw_item(1, qty=7000, price="1.01", item_id=1),
        _raw_item(2, qty=8000, price="1.02", item_id=2),
        _raw_item(3, qty=100, price="1.05", item_id=3, trade_date=DAY_2),
    ])]

    result = engine.detect(batch, user_id="user-1")

    merged = result.consolidated[0]
    assert merged.quantity == 15000
    assert merged.unit_price == Decimal("1.0153")
    assert merged.total_value == Decimal("15230.00")
    assert round(result.consolidation_rate, 1) == 66.7
    assert result.type_distribution == {"BUY": 2}

    summary = IntegrationProcessor(InMemoryUnitOfWork()).validate_operations_for_integration(
        result.consolidated
    )
    assert len(summary.valid) == 2
    assert summary.invalid == []
