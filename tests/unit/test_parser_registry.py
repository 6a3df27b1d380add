import pytest
from datetime import date
from decimal import Decimal

from app.domain.errors import InvoiceValidationError
from app.domain.models import Invoice, LineItem
from app.ingestion.parser_registry import LineItemParserRegistry, ParsedDocument


def _csv_parser(text, filename, user_id):
    """Header line 'number;date;brokerage', then 'asset;side;qty;price' rows"""
    header, *rows = [line for line in text.strip().splitlines() if line.strip()]
    number, trading_date, brokerage = header.split(";")
    items = []
    for seq, row in enumerate(rows, start=1):
        asset, side, quantity, price = row.split(";")
        items.append(LineItem(
            sequence_number=seq,
            asset_code=asset,
            operation_type=side,
            quantity=int(quantity),
            unit_price=Decimal(price),
            total_value=Decimal(price) * int(quantity),
        ))
    invoice = Invoice(
        invoice_number=number,
        trading_date=date.fromisoformat(trading_date),
        brokerage=brokerage,
        user_id=user_id,
    )
    return ParsedDocument(invoice=invoice, items=tuple(items))


def _named(name):
    def parser(text, filename, user_id):
        return ParsedDocument(
            invoice=Invoice(
                invoice_number=name,
                trading_date=date(2025, 1, 2),
                brokerage=name,
                user_id=user_id,
            ),
            items=(),
        )
    return parser


def test_parse_with_first_matching_parser():
    registry = LineItemParserRegistry()
    registry.register("csv", lambda text, filename: filename.endswith(".csv"), _csv_parser)

    document = registry.parse(
        "NF-9;2025-03-10;Clear\nXYZ11;C;300;1.03\nXYZ11;V;75;1.73\n",
        user_id="user-1",
        filename="note.csv",
    )

    assert document.invoice.invoice_number == "NF-9"
    assert document.invoice.user_id == "user-1"
    assert [item.quantity for item in document.items] == [300, 75]
    assert document.items[0].total_value == Decimal("309.00")


def test_priority_then_registration_order():
    registry = LineItemParserRegistry()
    always = lambda text, filename: True  # noqa: E731
    registry.register("generic", always, _named("generic"))
    registry.register("fallback", always, _named("fallback"))
    registry.register("broker", always, _named("broker"), priority=10)

    assert registry.names == ["broker", "generic", "fallback"]
    assert registry.resolve("anything").name == "broker"


def test_predicate_selects_parser():
    registry = LineItemParserRegistry()
    registry.register("clear", lambda text, filename: "CLEAR" in text, _named("clear"))
    registry.register("xp", lambda text, filename: "XP INVESTIMENTOS" in text, _named("xp"))

    assert registry.parse("NOTA XP INVESTIMENTOS", user_id="u").invoice.brokerage == "xp"


def test_no_matching_parser():
    registry = LineItemParserRegistry()
    registry.register("csv", lambda text, filename: filename.endswith(".csv"), _csv_parser)

    with pytest.raises(InvoiceValidationError):
        registry.parse("plain text", user_id="user-1", filename="note.pdf")


def test_duplicate_name_is_rejected():
    registry = LineItemParserRegistry()
    registry.register("csv", lambda text, filename: True, _csv_parser)

    with pytest.raises(ValueError):
        registry.register("csv", lambda text, filename: True, _csv_parser)
