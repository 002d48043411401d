"""Payroll run and payslip models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from statutory_payroll.models.base import MONEY, Base, JSONType, TimestampMixin


class PayrollRun(Base, TimestampMixin):
    """A committed payroll run for one company and one monthly period."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_basic: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_gross: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_net: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_epf_employee: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    total_epf_employer: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, default=Decimal("0")
    )
    total_etf: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_paye: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "company_id", "period_start", "period_end", name="payroll_run_period_unique"
        ),
        CheckConstraint(
            "status IN ('draft', 'processing', 'pending_approval', 'approved', 'paid')",
            name="payroll_run_status_check",
        ),
    )

    payslips: Mapped[list[Payslip]] = relationship(
        back_populates="payroll_run", cascade="all, delete-orphan"
    )


class Payslip(Base, TimestampMixin):
    """One employee's payslip within a run. Immutable once written."""

    __tablename__ = "payslip"

    payslip_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"), nullable=False
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id"), nullable=False
    )
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    basic_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    working_days: Mapped[int] = mapped_column(Integer, nullable=False)
    worked_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False)
    allowances: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    deductions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    gross_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    taxable_income: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    epf_employee: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    epf_employer: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    etf_employer: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    paye_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    ot_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    ot_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(32), nullable=False)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payslip_run_employee_unique"),
    )

    payroll_run: Mapped[PayrollRun] = relationship(back_populates="payslips")
