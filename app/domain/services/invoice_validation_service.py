"""
INVOICE VALIDATION SERVICE
Field and consistency checks on invoices and their line items

Returns findings as values; nothing here raises for bad data.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Callable, Optional, Sequence

from app.config import settings
from app.domain.models import Invoice, InvoiceValidationResult, LineItem, Side
from app.utils.time import today_local

logger = logging.getLogger(__name__)


def years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return day.replace(year=day.year - years, day=28)


class InvoiceValidationService:
    """Validates invoice headers and line items before detection"""

    def __init__(
        self,
        max_age_years: Optional[int] = None,
        min_unit_price: Optional[Decimal] = None,
        min_total_value: Optional[Decimal] = None,
        max_total_value: Optional[Decimal] = None,
        value_tolerance: Optional[Decimal] = None,
        spread_warning_ratio: Optional[Decimal] = None,
        clock: Callable[[], date] = today_local,
    ):
        self.max_age_years = max_age_years or settings.MAX_INVOICE_AGE_YEARS
        self.min_unit_price = min_unit_price or Decimal(str(settings.MIN_UNIT_PRICE))
        self.min_total_value = min_total_value or Decimal(str(settings.MIN_ITEM_TOTAL_VALUE))
        self.max_total_value = max_total_value or Decimal(str(settings.MAX_ITEM_TOTAL_VALUE))
        self.value_tolerance = value_tolerance or Decimal(str(settings.VALUE_TOLERANCE))
        self.spread_warning_ratio = (
            spread_warning_ratio or Decimal(str(settings.PRICE_SPREAD_WARNING_RATIO))
        )
        self.clock = clock

    def validate(self, invoice: Invoice, items: Sequence[LineItem]) -> InvoiceValidationResult:
        """
        Validate one invoice and its items

        Args:
            invoice: Invoice header
            items: Line items of the invoice

        Returns:
            InvoiceValidationResult with the items that passed
        """
        result = InvoiceValidationResult(invoice_id=invoice.id)
        result.errors.extend(self._validate_header(invoice))

        if not items:
            result.errors.append("Invoice has no line items")
            return result

        for item in items:
            problems = self.validate_item(item)
            if problems:
                result.item_errors[item.sequence_number] = problems
                result.warnings.extend(f"Item {item.sequence_number}: {p}" for p in problems)
            else:
                result.valid_items.append(item)

        if not result.valid_items:
            result.errors.append("Invoice has no valid line items")

        warnings, infos = self.analyze_items(result.valid_items)
        result.warnings.extend(warnings)
        result.infos.extend(infos)

        if result.errors:
            logger.warning(
                "Invoice %s failed validation: %s",
                invoice.invoice_number, "; ".join(result.errors),
            )
        return result

    def validate_item(self, item: LineItem) -> list[str]:
        """Problems found on one line item (empty when valid)"""
        problems = []
        if not item.asset_code or not item.asset_code.strip():
            problems.append("asset code is required")
        if item.side is None:
            problems.append(f"invalid operation type '{item.operation_type}'")
        if item.quantity is None or item.quantity <= 0:
            problems.append("quantity must be positive")
        if item.unit_price is None or item.unit_price < self.min_unit_price:
            problems.append(f"unit price must be at least {self.min_unit_price}")
        if item.total_value is None:
            problems.append("total value is required")
        elif item.total_value < self.min_total_value or item.total_value > self.max_total_value:
            problems.append(
                f"total value {item.total_value} outside "
                f"[{self.min_total_value}, {self.max_total_value}]"
            )

        if not problems:
            expected = item.unit_price * item.quantity
            if abs(expected - item.total_value) > self.value_tolerance:
                problems.append(
                    f"total value {item.total_value} does not match "
                    f"quantity x unit price ({expected})"
                )
        return problems

    def analyze_items(self, items: Sequence[LineItem]) -> tuple[list[str], list[str]]:
        """
        Cross-item findings over valid items

        Returns:
            (warnings, infos) for abnormal price spread and possible day trades
        """
        prices: dict[str, list[Decimal]] = defaultdict(list)
        sides: dict[str, set[Side]] = defaultdict(set)
        for item in items:
            asset = item.asset_code.strip().upper()
            prices[asset].append(item.unit_price)
            sides[asset].add(item.side)

        warnings = []
        for asset, asset_prices in prices.items():
            low, high = min(asset_prices), max(asset_prices)
            if low > 0 and (high - low) / low > self.spread_warning_ratio:
                warnings.append(
                    f"Price spread for asset {asset} is above "
                    f"{self.spread_warning_ratio * 100:.0f}% (min {low}, max {high})"
                )

        infos = [
            f"Possible Day Trade for asset {asset}"
            for asset, asset_sides in sides.items()
            if {Side.BUY, Side.SELL} <= asset_sides
        ]
        return warnings, infos

    def _validate_header(self, invoice: Invoice) -> list[str]:
        errors = []
        if not invoice.invoice_number or not invoice.invoice_number.strip():
            errors.append("Invoice number is required")
        if not invoice.brokerage or not invoice.brokerage.strip():
            errors.append("Brokerage is required")
        if not invoice.user_id:
            errors.append("Invoice owner is required")

        if invoice.trading_date is None:
            errors.append("Trading date is required")
        else:
            today = self.clock()
            if invoice.trading_date > today:
                errors.append(f"Trading date {invoice.trading_date} is in the future")
            elif invoice.trading_date < years_before(today, self.max_age_years):
                errors.append(
                    f"Trading date {invoice.trading_date} is older than "
                    f"{self.max_age_years} years"
                )
        return errors
