"""Statutory contribution and PAYE calculation.

EPF (employee and employer shares) and ETF are flat percentages of a single
base figure, which the caller constructs (basic salary). PAYE is progressive
over an ordered slab table:

    [
        TaxSlab(min_income=0,      max_income=100000, rate=0),
        TaxSlab(min_income=100000, max_income=150000, rate=6),
        TaxSlab(min_income=150000, max_income=None,   rate=12),
    ]

Each slab taxes only the part of the income that falls inside it, and the
per-slab amounts are summed unrounded and rounded once.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence

from statutory_payroll.calculators.line_builder import LineItemBuilder
from statutory_payroll.calculators.types import ZERO, StatutoryRates, TaxSlab
from statutory_payroll.exceptions import InvalidAmount, InvalidTaxTable

HUNDRED = Decimal("100")

# Sri Lanka monthly PAYE slabs (2024), expressed as contiguous ranges
DEFAULT_PAYE_SLABS: tuple[TaxSlab, ...] = (
    TaxSlab(Decimal("0"), Decimal("100000"), Decimal("0")),
    TaxSlab(Decimal("100000"), Decimal("141667"), Decimal("6")),
    TaxSlab(Decimal("141667"), Decimal("183333"), Decimal("12")),
    TaxSlab(Decimal("183333"), Decimal("225000"), Decimal("18")),
    TaxSlab(Decimal("225000"), Decimal("266667"), Decimal("24")),
    TaxSlab(Decimal("266667"), Decimal("308333"), Decimal("30")),
    TaxSlab(Decimal("308333"), None, Decimal("36")),
)


class StatutoryCalculator:
    """Pure EPF/ETF/PAYE calculations.

    No I/O and no shared mutable state; safe to use concurrently.
    """

    def __init__(self, rates: StatutoryRates | None = None):
        self.rates = rates or StatutoryRates()

    def calculate_epf_employee(self, basic_salary: Any) -> Decimal:
        """Employee EPF share: round(basic x employee rate)."""
        return self._contribution(basic_salary, self.rates.epf_employee)

    def calculate_epf_employer(self, basic_salary: Any) -> Decimal:
        """Employer EPF share: round(basic x employer rate)."""
        return self._contribution(basic_salary, self.rates.epf_employer)

    def calculate_etf(self, basic_salary: Any) -> Decimal:
        """Employer-only ETF: round(basic x ETF rate)."""
        return self._contribution(basic_salary, self.rates.etf)

    def calculate_paye(self, taxable_income: Any, slabs: Sequence[TaxSlab]) -> Decimal:
        """Calculate PAYE over progressive slabs.

        The table is validated first, so a malformed table is rejected even
        when the income would not reach the bad slab. Income at or below
        zero is untaxed.
        """
        income = LineItemBuilder.to_decimal(taxable_income, "taxable_income")
        self.validate_tax_slabs(slabs)

        if income <= 0:
            return ZERO

        total_tax = ZERO
        for slab in slabs:
            if income <= slab.min_income:
                break
            upper = income if slab.max_income is None else min(income, slab.max_income)
            total_tax += (upper - slab.min_income) * slab.rate / HUNDRED

        return LineItemBuilder.round_money(total_tax)

    def calculate_overtime(
        self,
        basic_salary: Any,
        working_days: int,
        hours: Any,
        multiplier: Any,
        hours_per_day: int = 8,
    ) -> Decimal:
        """Overtime pay: hours x (basic / (working days x hours per day)) x multiplier."""
        basic = LineItemBuilder.validate_amount(basic_salary, "basic_salary")
        ot_hours = LineItemBuilder.validate_amount(hours, "overtime_hours")
        rate_multiplier = LineItemBuilder.validate_amount(multiplier, "overtime_multiplier")
        if working_days <= 0:
            raise InvalidAmount("working_days", working_days)
        if hours_per_day <= 0:
            raise InvalidAmount("hours_per_day", hours_per_day)

        hourly_rate = basic / Decimal(working_days * hours_per_day)
        return LineItemBuilder.round_money(ot_hours * hourly_rate * rate_multiplier)

    @staticmethod
    def validate_tax_slabs(slabs: Sequence[TaxSlab]) -> None:
        """Check that slabs cover [0, inf) exactly once, in ascending order.

        Raises InvalidTaxTable describing the first problem found.
        """
        if not slabs:
            raise InvalidTaxTable("no tax slabs configured")

        last_index = len(slabs) - 1
        previous: TaxSlab | None = None

        for index, slab in enumerate(slabs):
            position = index + 1
            try:
                lower = LineItemBuilder.validate_amount(slab.min_income, "min_income")
                rate = LineItemBuilder.validate_amount(slab.rate, "rate")
                upper = (
                    None
                    if slab.max_income is None
                    else LineItemBuilder.validate_amount(slab.max_income, "max_income")
                )
            except InvalidAmount as exc:
                raise InvalidTaxTable(f"slab {position} has invalid {exc.field}") from exc

            if rate > HUNDRED:
                raise InvalidTaxTable(f"slab {position} rate {rate}% exceeds 100%")

            if upper is None and index != last_index:
                raise InvalidTaxTable(f"slab {position} is unbounded but is not the last slab")
            if upper is not None and upper <= lower:
                raise InvalidTaxTable(
                    f"slab {position} upper bound {upper} must exceed lower bound {lower}"
                )

            if previous is None:
                if lower != 0:
                    raise InvalidTaxTable(f"first slab starts at {lower}, expected 0")
            else:
                if lower < previous.min_income:
                    raise InvalidTaxTable("slabs are not in ascending order")
                if lower < previous.max_income:
                    raise InvalidTaxTable(
                        f"slab {position} overlaps previous slab "
                        f"({lower} < {previous.max_income})"
                    )
                if lower > previous.max_income:
                    raise InvalidTaxTable(
                        f"gap between {previous.max_income} and {lower} before slab {position}"
                    )

            previous = slab

        if slabs[last_index].max_income is not None:
            raise InvalidTaxTable("last slab must be unbounded")

    def _contribution(self, basic_salary: Any, rate: Decimal) -> Decimal:
        basic = LineItemBuilder.validate_amount(basic_salary, "basic_salary")
        return LineItemBuilder.round_money(basic * rate)
