"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from statutory_payroll.calculators.aggregator import RunTotals
from statutory_payroll.calculators.types import LineItem, PaySlip


class ErrorResponse(BaseModel):
    """Error body returned for payroll errors."""

    detail: str
    code: str


# ============================================================================
# Requests
# ============================================================================


class PayrollRunRequest(BaseModel):
    """Period and selection for a preview or a commit.

    ``employee_ids`` of None selects every active employee.
    """

    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    pay_date: date | None = None
    employee_ids: list[UUID] | None = None
    variable_amounts: dict[UUID, dict[str, Decimal]] = Field(default_factory=dict)


class StatusTransitionRequest(BaseModel):
    status: str


class PayslipEmailRequestBody(BaseModel):
    employee_ids: list[UUID] | None = None


# ============================================================================
# Preview
# ============================================================================


class LineItemResponse(BaseModel):
    kind: str
    name: str
    amount: Decimal
    source: str
    taxable: bool
    epf_applicable: bool
    reference: str | None = None

    @classmethod
    def from_line(cls, line: LineItem) -> "LineItemResponse":
        return cls(**line.to_canonical_dict())


class PayslipPreview(BaseModel):
    """Calculated payslip, not yet saved."""

    employee_id: UUID
    employee_name: str | None = None
    department: str | None
    basic_salary: Decimal
    working_days: int
    worked_days: Decimal
    allowances: list[LineItemResponse]
    deductions: list[LineItemResponse]
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
    has_negative_net: bool

    @classmethod
    def from_payslip(cls, payslip: PaySlip, employee_name: str | None = None) -> "PayslipPreview":
        return cls(
            employee_id=payslip.employee_id,
            employee_name=employee_name,
            department=payslip.department,
            basic_salary=payslip.basic_salary,
            working_days=payslip.working_days,
            worked_days=payslip.worked_days,
            allowances=[LineItemResponse.from_line(a) for a in payslip.allowances],
            deductions=[LineItemResponse.from_line(d) for d in payslip.deductions],
            gross_salary=payslip.gross_salary,
            taxable_income=payslip.taxable_income,
            epf_employee=payslip.epf_employee,
            epf_employer=payslip.epf_employer,
            etf_employer=payslip.etf_employer,
            paye_tax=payslip.paye_tax,
            net_salary=payslip.net_salary,
            ot_hours=payslip.ot_hours,
            ot_amount=payslip.ot_amount,
            fingerprint=payslip.fingerprint,
            has_negative_net=payslip.has_negative_net,
        )


class DepartmentSummaryResponse(BaseModel):
    count: int
    basic_total: Decimal
    gross_total: Decimal
    net_total: Decimal


class RunTotalsResponse(BaseModel):
    employee_count: int
    total_basic: Decimal
    total_gross: Decimal
    total_net: Decimal
    total_epf_employee: Decimal
    total_epf_employer: Decimal
    total_etf: Decimal
    total_paye: Decimal
    departments: dict[str, DepartmentSummaryResponse] = Field(default_factory=dict)

    @classmethod
    def from_totals(cls, totals: RunTotals) -> "RunTotalsResponse":
        return cls.model_validate(totals.to_dict())


class PreviewResponse(BaseModel):
    company_id: UUID
    period_start: date
    period_end: date
    pay_date: date
    loans_enabled: bool
    overtime_enabled: bool
    payslips: list[PayslipPreview]
    totals: RunTotalsResponse


# ============================================================================
# Committed runs
# ============================================================================


class CommitResponse(BaseModel):
    payroll_run_id: UUID
    status: str
    totals: RunTotalsResponse


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    company_id: UUID
    period_start: date
    period_end: date
    pay_date: date
    status: str
    employee_count: int
    total_basic: Decimal
    total_gross: Decimal
    total_net: Decimal
    total_epf_employee: Decimal
    total_epf_employer: Decimal
    total_etf: Decimal
    total_paye: Decimal
    created_by: UUID | None = None
    created_at: datetime


class PayslipResponse(BaseModel):
    """Schema for a saved payslip."""

    model_config = ConfigDict(from_attributes=True)

    payslip_id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    department: str | None
    basic_salary: Decimal
    working_days: int
    worked_days: Decimal
    allowances: list[dict[str, Any]]
    deductions: list[dict[str, Any]]
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


class PayslipListResponse(BaseModel):
    items: list[PayslipResponse]
    total: int


class PayslipEmailResponse(BaseModel):
    sent: int
    failed: int
    skipped: int
    details: list[dict[str, Any]]
