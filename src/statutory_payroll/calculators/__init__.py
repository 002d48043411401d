"""Payslip calculation: statutory contributions, PAYE, payslips and run totals."""

from statutory_payroll.calculators.aggregator import (
    DepartmentSummary,
    RunAggregator,
    RunTotals,
)
from statutory_payroll.calculators.line_builder import LineItemBuilder
from statutory_payroll.calculators.payslip_builder import PayslipBuilder
from statutory_payroll.calculators.statutory import (
    DEFAULT_PAYE_SLABS,
    StatutoryCalculator,
)
from statutory_payroll.calculators.types import (
    AttendanceSummary,
    ComponentCategory,
    ComponentType,
    Employee,
    LineItem,
    LineKind,
    LineSource,
    LoanDeduction,
    OvertimeEntry,
    PayPeriod,
    PaySlip,
    SalaryComponent,
    StatutoryRates,
    TaxSlab,
)

__all__ = [
    "AttendanceSummary",
    "ComponentCategory",
    "ComponentType",
    "DEFAULT_PAYE_SLABS",
    "DepartmentSummary",
    "Employee",
    "LineItem",
    "LineItemBuilder",
    "LineKind",
    "LineSource",
    "LoanDeduction",
    "OvertimeEntry",
    "PayPeriod",
    "PaySlip",
    "PayslipBuilder",
    "RunAggregator",
    "RunTotals",
    "SalaryComponent",
    "StatutoryCalculator",
    "StatutoryRates",
    "TaxSlab",
]
