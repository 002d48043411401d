"""Payslip builder - assembles one employee's payslip for a pay period."""

from __future__ import annotations

import hashlib
import json
import logging
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

from statutory_payroll.calculators.line_builder import LineItemBuilder
from statutory_payroll.calculators.statutory import StatutoryCalculator
from statutory_payroll.calculators.types import (
    ZERO,
    AttendanceSummary,
    ComponentCategory,
    ComponentType,
    Employee,
    LineItem,
    LineSource,
    LoanDeduction,
    OvertimeEntry,
    PayPeriod,
    PaySlip,
    SalaryComponent,
    StatutoryRates,
    TaxSlab,
)
from statutory_payroll.exceptions import InvalidAmount

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class PayslipBuilder:
    """Builds immutable payslips from salary, attendance and statutory rules.

    Calculation pipeline (stable order per employee):
    1) Prorate basic salary by worked days
    2) Allowance lines: fixed, percentage of basic, variable, overtime
    3) EPF employee/employer and ETF on the adjusted basic
    4) Taxable income (gross - EPF employee) and PAYE
    5) Deduction lines: EPF, PAYE, loans (when enabled), configured deductions
    6) Net salary (gross - deductions), never clamped

    Allowance and deduction components are configuration injected at
    construction; the builder carries no company-specific defaults.
    """

    def __init__(
        self,
        calculator: StatutoryCalculator | None = None,
        components: Iterable[SalaryComponent] = (),
        working_days: int = 22,
        overtime_hours_per_day: int = 8,
    ):
        if working_days <= 0:
            raise InvalidAmount("working_days", working_days)
        self.calculator = calculator or StatutoryCalculator()
        self.components = tuple(c for c in components if c.is_active)
        self.working_days = working_days
        self.overtime_hours_per_day = overtime_hours_per_day

    @classmethod
    def from_settings(
        cls, settings: Any, components: Iterable[SalaryComponent] = ()
    ) -> PayslipBuilder:
        """Create a builder using configured rates and working days."""
        return cls(
            calculator=StatutoryCalculator(StatutoryRates.from_settings(settings)),
            components=components,
            working_days=settings.default_working_days,
            overtime_hours_per_day=settings.overtime_hours_per_day,
        )

    def build(
        self,
        employee: Employee,
        period: PayPeriod,
        *,
        tax_slabs: Sequence[TaxSlab],
        attendance: AttendanceSummary | None = None,
        loans: Sequence[LoanDeduction] = (),
        loans_enabled: bool = False,
        working_days: int | None = None,
        overtime: Sequence[OvertimeEntry] = (),
        overtime_enabled: bool = False,
        variable_amounts: Mapping[str, Any] | None = None,
    ) -> PaySlip:
        """Build the payslip for one employee.

        Raises InvalidAmount / InvalidTaxTable on bad input; no payslip is
        produced in that case.
        """
        days = self.working_days if working_days is None else working_days
        if days <= 0:
            raise InvalidAmount("working_days", days)

        basic = (
            ZERO
            if employee.basic_salary is None
            else LineItemBuilder.validate_amount(employee.basic_salary, "basic_salary")
        )
        worked_days = (
            Decimal(days)
            if attendance is None
            else LineItemBuilder.validate_amount(attendance.worked_days, "worked_days")
        )
        # Never pay more than the full basic; extra days belong to overtime
        if worked_days > days:
            logger.info(
                "Employee %s worked %s of %d working days; crediting %d",
                employee.employee_id,
                worked_days,
                days,
                days,
            )
            worked_days = Decimal(days)
        self.calculator.validate_tax_slabs(tax_slabs)
        variable_amounts = variable_amounts or {}

        if basic == 0:
            logger.warning(
                "Employee %s has no basic salary; emitting zero-pay placeholder",
                employee.employee_id,
            )
            return self._build_placeholder(employee, period, days, worked_days, tax_slabs)

        # 1) Attendance proration
        daily_rate = basic / Decimal(days)
        adjusted_basic = LineItemBuilder.round_money(daily_rate * worked_days)

        # 2) Allowances
        allowances = self._component_lines(
            ComponentType.ALLOWANCE, adjusted_basic, variable_amounts
        )
        ot_hours = ZERO
        ot_amount = ZERO
        if overtime_enabled and overtime:
            ot_hours, ot_amount = self._overtime(basic, days, overtime)
            if ot_amount > 0:
                allowances.append(
                    LineItemBuilder.create_allowance_line(
                        "Overtime", ot_amount, source=LineSource.OVERTIME
                    )
                )
        gross = adjusted_basic + LineItemBuilder.sum_lines(allowances)

        # 3) Contributions on the adjusted basic only
        epf_employee = self.calculator.calculate_epf_employee(adjusted_basic)
        epf_employer = self.calculator.calculate_epf_employer(adjusted_basic)
        etf_employer = self.calculator.calculate_etf(adjusted_basic)

        # 4) PAYE
        taxable_income = gross - epf_employee
        paye_tax = self.calculator.calculate_paye(taxable_income, tax_slabs)

        # 5) Deductions
        deductions = self._statutory_lines(epf_employee, paye_tax)
        if loans_enabled:
            deductions.extend(LineItemBuilder.create_loan_line(loan) for loan in loans)
        deductions.extend(
            self._component_lines(ComponentType.DEDUCTION, adjusted_basic, variable_amounts)
        )

        # 6) Net
        net_salary = gross - LineItemBuilder.sum_lines(deductions)
        if net_salary < 0:
            logger.warning(
                "Deductions exceed gross salary for employee %s (net %s)",
                employee.employee_id,
                net_salary,
            )

        fingerprint = self._compute_fingerprint(
            employee=employee,
            period=period,
            working_days=days,
            worked_days=worked_days,
            tax_slabs=tax_slabs,
            loans=loans if loans_enabled else (),
            overtime=overtime if overtime_enabled else (),
            variable_amounts=variable_amounts,
        )

        return PaySlip(
            employee_id=employee.employee_id,
            period=period,
            department=employee.department,
            basic_salary=adjusted_basic,
            working_days=days,
            worked_days=worked_days,
            allowances=tuple(allowances),
            deductions=tuple(deductions),
            gross_salary=gross,
            taxable_income=taxable_income,
            epf_employee=epf_employee,
            epf_employer=epf_employer,
            etf_employer=etf_employer,
            paye_tax=paye_tax,
            net_salary=net_salary,
            ot_hours=ot_hours,
            ot_amount=ot_amount,
            fingerprint=fingerprint,
        )

    def _build_placeholder(
        self,
        employee: Employee,
        period: PayPeriod,
        days: int,
        worked_days: Decimal,
        tax_slabs: Sequence[TaxSlab],
    ) -> PaySlip:
        """All-zero payslip for an employee without a basic salary."""
        return PaySlip(
            employee_id=employee.employee_id,
            period=period,
            department=employee.department,
            basic_salary=ZERO,
            working_days=days,
            worked_days=worked_days,
            allowances=(),
            deductions=tuple(self._statutory_lines(ZERO, ZERO)),
            gross_salary=ZERO,
            taxable_income=ZERO,
            epf_employee=ZERO,
            epf_employer=ZERO,
            etf_employer=ZERO,
            paye_tax=ZERO,
            net_salary=ZERO,
            ot_hours=ZERO,
            ot_amount=ZERO,
            fingerprint=self._compute_fingerprint(
                employee=employee,
                period=period,
                working_days=days,
                worked_days=worked_days,
                tax_slabs=tax_slabs,
                loans=(),
                overtime=(),
                variable_amounts={},
            ),
        )

    def _statutory_lines(self, epf_employee: Decimal, paye_tax: Decimal) -> list[LineItem]:
        epf_label = f"EPF (Employee {_percent_label(self.calculator.rates.epf_employee)}%)"
        return [
            LineItemBuilder.create_statutory_line(epf_label, epf_employee),
            LineItemBuilder.create_statutory_line("PAYE Tax", paye_tax),
        ]

    def _component_lines(
        self,
        component_type: ComponentType,
        adjusted_basic: Decimal,
        variable_amounts: Mapping[str, Any],
    ) -> list[LineItem]:
        """Lines for configured components of one type, in configuration order."""
        lines: list[LineItem] = []
        for component in self.components:
            if component.type != component_type:
                continue

            source = LineSource.COMPONENT
            if component.category == ComponentCategory.FIXED:
                amount = LineItemBuilder.validate_amount(component.value, component.name)
            elif component.category == ComponentCategory.PERCENTAGE:
                rate = LineItemBuilder.validate_amount(component.value, component.name)
                amount = adjusted_basic * rate / HUNDRED
            else:
                if component.name not in variable_amounts:
                    continue
                amount = variable_amounts[component.name]
                source = LineSource.VARIABLE

            reference = str(component.component_id) if component.component_id else None
            if component_type == ComponentType.ALLOWANCE:
                lines.append(
                    LineItemBuilder.create_allowance_line(
                        component.name,
                        amount,
                        source=source,
                        taxable=component.is_taxable,
                        epf_applicable=component.is_epf_applicable,
                        reference=reference,
                    )
                )
            else:
                lines.append(
                    LineItemBuilder.create_deduction_line(
                        component.name, amount, source=source, reference=reference
                    )
                )
        return lines

    def _overtime(
        self, basic: Decimal, days: int, entries: Sequence[OvertimeEntry]
    ) -> tuple[Decimal, Decimal]:
        """Total overtime hours and the amount, rounded once."""
        hours = ZERO
        weighted_hours = ZERO
        for entry in entries:
            entry_hours = LineItemBuilder.validate_amount(entry.hours, "overtime_hours")
            multiplier = LineItemBuilder.validate_amount(entry.multiplier, "overtime_multiplier")
            hours += entry_hours
            weighted_hours += entry_hours * multiplier

        amount = self.calculator.calculate_overtime(
            basic,
            days,
            weighted_hours,
            Decimal("1"),
            hours_per_day=self.overtime_hours_per_day,
        )
        return hours, amount

    def _compute_fingerprint(
        self,
        *,
        employee: Employee,
        period: PayPeriod,
        working_days: int,
        worked_days: Decimal,
        tax_slabs: Sequence[TaxSlab],
        loans: Sequence[LoanDeduction],
        overtime: Sequence[OvertimeEntry],
        variable_amounts: Mapping[str, Any],
    ) -> str:
        """Compute fingerprint of all inputs used in calculation."""
        rates = self.calculator.rates
        data = {
            "employee_id": str(employee.employee_id),
            "basic_salary": str(employee.basic_salary),
            "period": [str(period.start), str(period.end), str(period.pay_date)],
            "working_days": working_days,
            "worked_days": str(worked_days),
            "rates": [str(rates.epf_employee), str(rates.epf_employer), str(rates.etf)],
            "slabs": [[str(s.min_income), str(s.max_income), str(s.rate)] for s in tax_slabs],
            "components": [
                [c.name, c.type.value, c.category.value, str(c.value)] for c in self.components
            ],
            "loans": [[str(l.loan_id), l.loan_type, str(l.monthly_deduction)] for l in loans],
            "overtime": [[str(o.hours), str(o.multiplier)] for o in overtime],
            "variable": {k: str(v) for k, v in variable_amounts.items()},
        }
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]


def _percent_label(rate: Decimal) -> str:
    percent = rate * HUNDRED
    if percent == percent.to_integral_value():
        return str(int(percent))
    return str(percent.normalize())
