"""Run-level totals and per-department breakdown."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from statutory_payroll.calculators.types import ZERO, PaySlip


@dataclass
class DepartmentSummary:
    """Totals for one department within a run."""

    count: int = 0
    basic_total: Decimal = ZERO
    gross_total: Decimal = ZERO
    net_total: Decimal = ZERO

    def add(self, payslip: PaySlip) -> None:
        self.count += 1
        self.basic_total += payslip.basic_salary
        self.gross_total += payslip.gross_salary
        self.net_total += payslip.net_salary


@dataclass
class RunTotals:
    """Aggregate totals over all payslips in a run."""

    employee_count: int = 0
    total_basic: Decimal = ZERO
    total_gross: Decimal = ZERO
    total_net: Decimal = ZERO
    total_epf_employee: Decimal = ZERO
    total_epf_employer: Decimal = ZERO
    total_etf: Decimal = ZERO
    total_paye: Decimal = ZERO
    departments: dict[str, DepartmentSummary] = field(default_factory=dict)

    @property
    def total_employer_cost(self) -> Decimal:
        """Gross pay plus employer EPF and ETF."""
        return self.total_gross + self.total_epf_employer + self.total_etf

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_count": self.employee_count,
            "total_basic": str(self.total_basic),
            "total_gross": str(self.total_gross),
            "total_net": str(self.total_net),
            "total_epf_employee": str(self.total_epf_employee),
            "total_epf_employer": str(self.total_epf_employer),
            "total_etf": str(self.total_etf),
            "total_paye": str(self.total_paye),
            "departments": {
                name: {
                    "count": summary.count,
                    "basic_total": str(summary.basic_total),
                    "gross_total": str(summary.gross_total),
                    "net_total": str(summary.net_total),
                }
                for name, summary in self.departments.items()
            },
        }


class RunAggregator:
    """Sums payslips into run totals.

    Totals are exact sums of the already-rounded per-slip fields, so they
    always reconcile with the payslips. Payslips without a department count
    toward the totals but not toward any department.
    """

    def aggregate(self, payslips: Iterable[PaySlip]) -> RunTotals:
        totals = RunTotals()

        for payslip in payslips:
            totals.employee_count += 1
            totals.total_basic += payslip.basic_salary
            totals.total_gross += payslip.gross_salary
            totals.total_net += payslip.net_salary
            totals.total_epf_employee += payslip.epf_employee
            totals.total_epf_employer += payslip.epf_employer
            totals.total_etf += payslip.etf_employer
            totals.total_paye += payslip.paye_tax

            if payslip.department:
                summary = totals.departments.setdefault(
                    payslip.department, DepartmentSummary()
                )
                summary.add(payslip)

        return totals
