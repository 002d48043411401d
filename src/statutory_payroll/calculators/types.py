"""Type definitions for the payslip calculation pipeline."""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ZERO = Decimal("0")


class LineKind(str, Enum):
    """Payslip line item kinds."""

    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"


class LineSource(str, Enum):
    """Where a line item amount came from."""

    STATUTORY = "statutory"
    LOAN = "loan"
    COMPONENT = "component"
    VARIABLE = "variable"
    OVERTIME = "overtime"


@dataclass(frozen=True)
class LineItem:
    """One allowance or deduction on a payslip.

    Amounts are always non-negative whole currency units; ``kind`` carries
    the direction.
    """

    kind: LineKind
    name: str
    amount: Decimal
    source: LineSource
    taxable: bool = True
    epf_applicable: bool = False
    reference: str | None = None  # loan id or component id

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "kind": self.kind.value,
            "name": self.name,
            "amount": str(self.amount),
            "source": self.source.value,
            "taxable": self.taxable,
            "epf_applicable": self.epf_applicable,
            "reference": self.reference,
        }


class EmploymentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class Employee:
    """Read-only view of an employee as seen by the engine.

    Banking and EPF fields are carried for display on the payslip only.
    """

    employee_id: UUID
    basic_salary: Decimal | None
    status: str = EmploymentStatus.ACTIVE.value
    department: str | None = None
    employee_number: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    bank_name: str | None = None
    bank_account_number: str | None = None
    epf_number: str | None = None

    @property
    def is_eligible(self) -> bool:
        """Only active employees can be included in a payroll run."""
        return self.status == EmploymentStatus.ACTIVE.value

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class ComponentType(str, Enum):
    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"


class ComponentCategory(str, Enum):
    FIXED = "fixed"  # flat amount
    PERCENTAGE = "percentage"  # percent of basic
    VARIABLE = "variable"  # entered per run


@dataclass(frozen=True)
class SalaryComponent:
    """Company-configured allowance or deduction."""

    name: str
    type: ComponentType
    category: ComponentCategory
    value: Decimal = ZERO
    is_taxable: bool = True
    is_epf_applicable: bool = False
    is_active: bool = True
    component_id: UUID | None = None


@dataclass(frozen=True)
class TaxSlab:
    """PAYE income slab. ``max_income`` of None means unbounded."""

    min_income: Decimal
    max_income: Decimal | None
    rate: Decimal  # percentage, e.g. 6 for 6%


@dataclass(frozen=True)
class LoanDeduction:
    """Fixed monthly recovery for a loan active in the pay period."""

    loan_id: UUID
    loan_type: str
    monthly_deduction: Decimal
    outstanding_amount: Decimal | None = None

    @property
    def label(self) -> str:
        return LOAN_TYPE_LABELS.get(self.loan_type, self.loan_type)


LOAN_TYPE_LABELS = {
    "salary_advance": "Salary Advance",
    "personal_loan": "Personal Loan",
    "emergency_loan": "Emergency Loan",
}


@dataclass(frozen=True)
class AttendanceSummary:
    """Attendance for one employee over a pay period."""

    worked_days: Decimal
    worked_hours: Decimal = ZERO


@dataclass(frozen=True)
class OvertimeEntry:
    """Approved overtime hours at a rate multiplier."""

    hours: Decimal
    multiplier: Decimal = Decimal("1.5")


@dataclass(frozen=True)
class PayPeriod:
    """A monthly pay period."""

    start: date
    end: date
    pay_date: date

    @classmethod
    def for_month(cls, year: int, month: int, pay_date: date) -> PayPeriod:
        """Build the period covering the whole calendar month."""
        last_day = calendar.monthrange(year, month)[1]
        return cls(
            start=date(year, month, 1),
            end=date(year, month, last_day),
            pay_date=pay_date,
        )

    @property
    def month(self) -> int:
        return self.start.month

    @property
    def year(self) -> int:
        return self.start.year


@dataclass(frozen=True)
class StatutoryRates:
    """Contribution rates as fractions of basic salary."""

    epf_employee: Decimal = Decimal("0.08")
    epf_employer: Decimal = Decimal("0.12")
    etf: Decimal = Decimal("0.03")

    @classmethod
    def from_settings(cls, settings: Any) -> StatutoryRates:
        return cls(
            epf_employee=settings.epf_employee_rate,
            epf_employer=settings.epf_employer_rate,
            etf=settings.etf_rate,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PaySlip:
    """Computed payslip for one employee for one pay period.

    ``created_at`` is excluded from equality so that two builds from the
    same inputs compare equal.
    """

    employee_id: UUID
    period: PayPeriod
    department: str | None
    basic_salary: Decimal
    working_days: int
    worked_days: Decimal
    allowances: tuple[LineItem, ...]
    deductions: tuple[LineItem, ...]
    gross_salary: Decimal
    taxable_income: Decimal
    epf_employee: Decimal
    epf_employer: Decimal
    etf_employer: Decimal
    paye_tax: Decimal
    net_salary: Decimal
    ot_hours: Decimal
    ot_amount: Decimal
    fingerprint: str
    created_at: datetime = field(default_factory=_now, compare=False)

    @property
    def total_allowances(self) -> Decimal:
        return sum((a.amount for a in self.allowances), ZERO)

    @property
    def total_deductions(self) -> Decimal:
        return sum((d.amount for d in self.deductions), ZERO)

    @property
    def loan_deductions(self) -> tuple[LineItem, ...]:
        return tuple(d for d in self.deductions if d.source == LineSource.LOAN)

    @property
    def has_negative_net(self) -> bool:
        """Deductions exceed gross; callers should flag this for review."""
        return self.net_salary < 0
