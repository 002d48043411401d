"""SQL-backed payroll store and feature flags.

``create_payroll_run`` is the only write on the commit path. It inserts the
run row, every payslip row and the outbox event in one transaction:

1. Re-check for an existing run for the period inside the transaction
2. Insert the run (status already advanced through the commit path)
3. Insert payslips (unique per run and employee)
4. Insert the PayrollRunCommitted outbox event

Any failure rolls the whole transaction back, so either the run and all of
its payslips exist or nothing does.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statutory_payroll import models
from statutory_payroll.calculators.statutory import DEFAULT_PAYE_SLABS
from statutory_payroll.calculators.types import (
    ZERO,
    AttendanceSummary,
    ComponentCategory,
    ComponentType,
    Employee,
    LoanDeduction,
    OvertimeEntry,
    PayPeriod,
    PaySlip,
    SalaryComponent,
    TaxSlab,
)
from statutory_payroll.events.types import (
    DomainEvent,
    EventMetadata,
    PayrollRunStatusChanged,
)
from statutory_payroll.exceptions import (
    DuplicateRunForPeriod,
    PersistenceFailure,
    WorkflowError,
)
from statutory_payroll.services.company_profile import CompanyProfile
from statutory_payroll.services.ports import NewPayrollRun
from statutory_payroll.services.state_machine import PayrollRunStateMachine

logger = logging.getLogger(__name__)

# Attendance status -> worked day credit
DAY_CREDIT: dict[str, Decimal] = {
    "present": Decimal("1"),
    "half_day": Decimal("0.5"),
}


class RunNotFoundError(WorkflowError):
    code = "RUN_NOT_FOUND"

    def __init__(self, payroll_run_id: UUID):
        self.payroll_run_id = payroll_run_id
        super().__init__(f"Payroll run {payroll_run_id} not found")


def outbox_row(event: DomainEvent, aggregate_id: UUID) -> models.OutboxEvent:
    return models.OutboxEvent(
        event_id=event.metadata.event_id,
        event_type=event.event_type,
        category=event.category.value,
        company_id=event.metadata.company_id,
        aggregate_id=aggregate_id,
        payload=event.to_dict(),
        status="pending",
        attempts=0,
    )


def _to_employee(row: models.Employee) -> Employee:
    return Employee(
        employee_id=row.employee_id,
        basic_salary=row.basic_salary,
        status=row.status,
        department=row.department,
        employee_number=row.employee_number,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        bank_name=row.bank_name,
        bank_account_number=row.bank_account_number,
        epf_number=row.epf_number,
    )


def _payslip_row(payroll_run_id: UUID, payslip: PaySlip) -> models.Payslip:
    return models.Payslip(
        payroll_run_id=payroll_run_id,
        employee_id=payslip.employee_id,
        department=payslip.department,
        basic_salary=payslip.basic_salary,
        working_days=payslip.working_days,
        worked_days=payslip.worked_days,
        allowances=[line.to_canonical_dict() for line in payslip.allowances],
        deductions=[line.to_canonical_dict() for line in payslip.deductions],
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
    )


class SqlPayrollStore:
    """PayrollStore and FeatureFlags over SQLAlchemy async sessions.

    Each call opens its own session from the factory.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ----- Reads -----

    async def list_active_employees(self, company_id: UUID) -> list[Employee]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.Employee)
                .where(
                    models.Employee.company_id == company_id,
                    models.Employee.status == "active",
                )
                .order_by(models.Employee.employee_number, models.Employee.first_name)
            )
            return [_to_employee(row) for row in result.scalars()]

    async def get_attendance_summary(
        self, employee_ids: Sequence[UUID], month: int, year: int
    ) -> dict[UUID, AttendanceSummary]:
        """Worked days per employee: present counts 1, half day 0.5.

        Employees with no records in the month are left out.
        """
        if not employee_ids:
            return {}
        period = PayPeriod.for_month(year, month, date(year, month, 1))

        async with self.session_factory() as session:
            result = await session.execute(
                select(
                    models.AttendanceRecord.employee_id,
                    models.AttendanceRecord.status,
                    models.AttendanceRecord.hours_worked,
                ).where(
                    models.AttendanceRecord.employee_id.in_(employee_ids),
                    models.AttendanceRecord.work_date >= period.start,
                    models.AttendanceRecord.work_date <= period.end,
                )
            )
            days: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
            hours: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
            for employee_id, status, hours_worked in result:
                days[employee_id] += DAY_CREDIT.get(status, ZERO)
                hours[employee_id] += Decimal(hours_worked or 0)

        return {
            employee_id: AttendanceSummary(worked_days=worked, worked_hours=hours[employee_id])
            for employee_id, worked in days.items()
        }

    async def get_active_loan_deductions(
        self, employee_ids: Sequence[UUID]
    ) -> dict[UUID, list[LoanDeduction]]:
        if not employee_ids:
            return {}
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.Loan)
                .where(
                    models.Loan.employee_id.in_(employee_ids),
                    models.Loan.status == "active",
                    models.Loan.outstanding_amount > 0,
                )
                .order_by(models.Loan.created_at)
            )
            loans: dict[UUID, list[LoanDeduction]] = defaultdict(list)
            for row in result.scalars():
                loans[row.employee_id].append(
                    LoanDeduction(
                        loan_id=row.loan_id,
                        loan_type=row.loan_type,
                        monthly_deduction=row.monthly_deduction,
                        outstanding_amount=row.outstanding_amount,
                    )
                )
        return dict(loans)

    async def get_approved_overtime(
        self, employee_ids: Sequence[UUID], period_start: date, period_end: date
    ) -> dict[UUID, list[OvertimeEntry]]:
        if not employee_ids:
            return {}
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.OvertimeRecord)
                .where(
                    models.OvertimeRecord.employee_id.in_(employee_ids),
                    models.OvertimeRecord.status == "approved",
                    models.OvertimeRecord.work_date >= period_start,
                    models.OvertimeRecord.work_date <= period_end,
                )
                .order_by(models.OvertimeRecord.work_date)
            )
            entries: dict[UUID, list[OvertimeEntry]] = defaultdict(list)
            for row in result.scalars():
                entries[row.employee_id].append(
                    OvertimeEntry(hours=row.hours, multiplier=row.rate_multiplier)
                )
        return dict(entries)

    async def get_active_tax_slabs(self, company_id: UUID) -> list[TaxSlab]:
        """Company slabs, else the stored national table, else the built-in one."""
        async with self.session_factory() as session:
            for owner in (company_id, None):
                condition = (
                    models.TaxSlabRecord.company_id.is_(None)
                    if owner is None
                    else models.TaxSlabRecord.company_id == owner
                )
                result = await session.execute(
                    select(models.TaxSlabRecord)
                    .where(condition, models.TaxSlabRecord.is_active.is_(True))
                    .order_by(models.TaxSlabRecord.min_income)
                )
                rows = list(result.scalars())
                if rows:
                    return [
                        TaxSlab(row.min_income, row.max_income, row.rate) for row in rows
                    ]
        return list(DEFAULT_PAYE_SLABS)

    async def get_salary_components(self, company_id: UUID) -> list[SalaryComponent]:
        """Active allowance and deduction components in configuration order."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.SalaryComponentRecord)
                .where(
                    models.SalaryComponentRecord.company_id == company_id,
                    models.SalaryComponentRecord.is_active.is_(True),
                )
                .order_by(
                    models.SalaryComponentRecord.created_at,
                    models.SalaryComponentRecord.name,
                )
            )
            return [
                SalaryComponent(
                    name=row.name,
                    type=ComponentType(row.component_type),
                    category=ComponentCategory(row.calculation_type),
                    value=row.value,
                    is_taxable=row.is_taxable,
                    is_epf_applicable=row.is_epf_applicable,
                    component_id=row.component_id,
                )
                for row in result.scalars()
            ]

    async def get_company_profile(self, company_id: UUID) -> CompanyProfile | None:
        async with self.session_factory() as session:
            row = await session.get(models.Company, company_id)
            if row is None:
                return None
            return CompanyProfile(
                company_id=row.company_id,
                name=row.name,
                registration_number=row.registration_number,
                epf_number=row.epf_number,
                etf_number=row.etf_number,
                bank_name=row.bank_name,
                bank_account_number=row.bank_account_number,
                address=row.address,
                phone=row.phone,
                email=row.email,
            )

    async def get_existing_run(
        self, company_id: UUID, period_start: date, period_end: date
    ) -> UUID | None:
        async with self.session_factory() as session:
            return await self._find_run(session, company_id, period_start, period_end)

    async def is_feature_enabled(self, company_id: UUID, name: str) -> bool:
        """Flags default to off when no row exists."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(models.CompanyFeatureFlag.is_enabled).where(
                    models.CompanyFeatureFlag.company_id == company_id,
                    models.CompanyFeatureFlag.feature_name == name,
                )
            )
            return bool(result.scalar_one_or_none())

    async def get_run(self, payroll_run_id: UUID) -> models.PayrollRun:
        async with self.session_factory() as session:
            run = await session.get(models.PayrollRun, payroll_run_id)
            if run is None:
                raise RunNotFoundError(payroll_run_id)
            return run

    async def list_payslips(self, payroll_run_id: UUID) -> list[models.Payslip]:
        async with self.session_factory() as session:
            if await session.get(models.PayrollRun, payroll_run_id) is None:
                raise RunNotFoundError(payroll_run_id)
            result = await session.execute(
                select(models.Payslip)
                .where(models.Payslip.payroll_run_id == payroll_run_id)
                .order_by(models.Payslip.department, models.Payslip.employee_id)
            )
            return list(result.scalars())

    # ----- Writes -----

    async def create_payroll_run(
        self, run: NewPayrollRun, payslips: Sequence[PaySlip]
    ) -> UUID:
        """Persist the run, its payslips and the outbox event atomically."""
        period = run.period
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    existing = await self._find_run(
                        session, run.company_id, period.start, period.end
                    )
                    if existing is not None:
                        raise DuplicateRunForPeriod(
                            run.company_id, period.start, period.end, existing
                        )

                    totals = run.totals
                    session.add(
                        models.PayrollRun(
                            payroll_run_id=run.run_id,
                            company_id=run.company_id,
                            period_start=period.start,
                            period_end=period.end,
                            pay_date=period.pay_date,
                            status=run.status,
                            employee_count=totals.employee_count,
                            total_basic=totals.total_basic,
                            total_gross=totals.total_gross,
                            total_net=totals.total_net,
                            total_epf_employee=totals.total_epf_employee,
                            total_epf_employer=totals.total_epf_employer,
                            total_etf=totals.total_etf,
                            total_paye=totals.total_paye,
                            created_by=run.created_by,
                        )
                    )
                    await session.flush()

                    session.add_all(_payslip_row(run.run_id, p) for p in payslips)
                    session.add(outbox_row(run.committed_event, run.run_id))
                    await session.flush()
        except IntegrityError as exc:
            # A concurrent commit for the same period wins the unique constraint
            existing = await self.get_existing_run(run.company_id, period.start, period.end)
            if existing is not None:
                raise DuplicateRunForPeriod(
                    run.company_id, period.start, period.end, existing
                ) from exc
            logger.error("Payroll run %s rejected by database: %s", run.run_id, exc.orig)
            raise PersistenceFailure(f"Payroll run could not be saved: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            logger.error("Payroll run %s could not be saved: %s", run.run_id, exc)
            raise PersistenceFailure(f"Payroll run could not be saved: {exc}") from exc

        logger.info(
            "Committed payroll run %s for company %s (%s to %s, %d payslips)",
            run.run_id,
            run.company_id,
            period.start,
            period.end,
            len(payslips),
        )
        return run.run_id

    async def transition_status(
        self, payroll_run_id: UUID, to_status: str, actor_id: UUID | None = None
    ) -> models.PayrollRun:
        """Move a committed run along its approval lifecycle."""
        async with self.session_factory() as session:
            async with session.begin():
                run = await session.get(models.PayrollRun, payroll_run_id)
                if run is None:
                    raise RunNotFoundError(payroll_run_id)
                from_status = run.status
                PayrollRunStateMachine.validate_transition(from_status, to_status)
                run.status = to_status

                event = PayrollRunStatusChanged(
                    metadata=EventMetadata.create(
                        company_id=run.company_id,
                        correlation_id=payroll_run_id,
                        actor_id=actor_id,
                        actor_type="user" if actor_id else "system",
                    ),
                    payroll_run_id=payroll_run_id,
                    from_status=from_status,
                    to_status=to_status,
                )
                session.add(outbox_row(event, payroll_run_id))

        logger.info("Payroll run %s moved %s -> %s", payroll_run_id, from_status, to_status)
        return run

    @staticmethod
    async def _find_run(
        session: AsyncSession, company_id: UUID, period_start: date, period_end: date
    ) -> UUID | None:
        result = await session.execute(
            select(models.PayrollRun.payroll_run_id).where(
                models.PayrollRun.company_id == company_id,
                models.PayrollRun.period_start == period_start,
                models.PayrollRun.period_end == period_end,
            )
        )
        return result.scalar_one_or_none()
