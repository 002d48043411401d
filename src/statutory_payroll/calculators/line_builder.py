"""Line item builder and whole-unit money rounding."""

from __future__ import annotations

import hashlib
import json
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

from statutory_payroll.calculators.types import (
    ZERO,
    LineItem,
    LineKind,
    LineSource,
    LoanDeduction,
)
from statutory_payroll.exceptions import InvalidAmount


class LineItemBuilder:
    """Builds payslip line items.

    Conventions:
    - Line amounts are non-negative; LineKind carries the direction
    - Output amounts are whole currency units, rounded half-up
    - Intermediate ratios (daily rate, hourly rate) are never rounded
    """

    OUTPUT_PRECISION = Decimal("1")

    @staticmethod
    def round_money(amount: Decimal) -> Decimal:
        """Round amount to whole currency units (half-up)."""
        return amount.quantize(LineItemBuilder.OUTPUT_PRECISION, rounding=ROUND_HALF_UP)

    @staticmethod
    def to_decimal(value: Any, field: str) -> Decimal:
        """Coerce a numeric input to Decimal, rejecting non-finite values."""
        if isinstance(value, bool) or value is None:
            raise InvalidAmount(field, value)
        if isinstance(value, Decimal):
            result = value
        else:
            try:
                result = Decimal(str(value))
            except (InvalidOperation, ValueError):
                raise InvalidAmount(field, value) from None
        if not result.is_finite():
            raise InvalidAmount(field, value)
        return result

    @staticmethod
    def validate_amount(value: Any, field: str) -> Decimal:
        """Coerce and require a finite, non-negative amount."""
        result = LineItemBuilder.to_decimal(value, field)
        if result < 0:
            raise InvalidAmount(field, value)
        return result

    @staticmethod
    def compute_line_hash(line: LineItem) -> str:
        """Compute deterministic hash for a line item."""
        canonical = line.to_canonical_dict()
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    @staticmethod
    def create_allowance_line(
        name: str,
        amount: Decimal,
        source: LineSource = LineSource.COMPONENT,
        taxable: bool = True,
        epf_applicable: bool = False,
        reference: str | None = None,
    ) -> LineItem:
        """Create an allowance line item."""
        return LineItem(
            kind=LineKind.ALLOWANCE,
            name=name,
            amount=LineItemBuilder.round_money(
                LineItemBuilder.validate_amount(amount, name)
            ),
            source=source,
            taxable=taxable,
            epf_applicable=epf_applicable,
            reference=reference,
        )

    @staticmethod
    def create_deduction_line(
        name: str,
        amount: Decimal,
        source: LineSource = LineSource.COMPONENT,
        reference: str | None = None,
    ) -> LineItem:
        """Create a deduction line item."""
        return LineItem(
            kind=LineKind.DEDUCTION,
            name=name,
            amount=LineItemBuilder.round_money(
                LineItemBuilder.validate_amount(amount, name)
            ),
            source=source,
            taxable=False,
            reference=reference,
        )

    @staticmethod
    def create_statutory_line(name: str, amount: Decimal) -> LineItem:
        """Create a statutory deduction (EPF employee share, PAYE)."""
        return LineItemBuilder.create_deduction_line(
            name, amount, source=LineSource.STATUTORY
        )

    @staticmethod
    def create_loan_line(loan: LoanDeduction) -> LineItem:
        """Create a loan recovery deduction."""
        return LineItemBuilder.create_deduction_line(
            f"Loan: {loan.label}",
            loan.monthly_deduction,
            source=LineSource.LOAN,
            reference=str(loan.loan_id),
        )

    @staticmethod
    def sum_lines(lines: Iterable[LineItem]) -> Decimal:
        """Sum line amounts."""
        return sum((line.amount for line in lines), ZERO)
