"""Pytest fixtures for statutory payroll tests."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncGenerator, Sequence
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from statutory_payroll import models
from statutory_payroll.api.app import create_app
from statutory_payroll.calculators.types import (
    AttendanceSummary,
    Employee,
    LoanDeduction,
    OvertimeEntry,
    PaySlip,
    TaxSlab,
)
from statutory_payroll.database import make_session_factory
from statutory_payroll.events.types import DomainEvent
from statutory_payroll.exceptions import DuplicateRunForPeriod, PersistenceFailure
from statutory_payroll.services.company_profile import CompanyProfile
from statutory_payroll.services.ports import NewPayrollRun


def sqlite_url(directory: Path) -> str:
    return f"sqlite+aiosqlite:///{directory / 'payroll.db'}"


WORKED_EXAMPLE_SLABS = [
    TaxSlab(Decimal("0"), Decimal("100000"), Decimal("0")),
    TaxSlab(Decimal("100000"), Decimal("150000"), Decimal("6")),
    TaxSlab(Decimal("150000"), None, Decimal("12")),
]


def make_employee(
    basic: str | None = "88000", department: str | None = "Engineering", **kwargs: Any
) -> Employee:
    return Employee(
        employee_id=kwargs.pop("employee_id", uuid4()),
        basic_salary=None if basic is None else Decimal(basic),
        department=department,
        first_name=kwargs.pop("first_name", "Test"),
        last_name=kwargs.pop("last_name", "Employee"),
        **kwargs,
    )


def complete_profile(company_id: UUID) -> CompanyProfile:
    return CompanyProfile(
        company_id=company_id,
        name="Lanka Widgets (Pvt) Ltd",
        registration_number="PV 12345",
        epf_number="EPF/A/1234",
        etf_number="ETF/1234",
        bank_name="Commercial Bank",
        bank_account_number="1000123456",
    )


# ============================================================================
# In-memory collaborators
# ============================================================================


class FakeStore:
    """In-memory PayrollStore."""

    def __init__(
        self,
        employees: Sequence[Employee] = (),
        *,
        attendance: dict[UUID, AttendanceSummary] | None = None,
        loans: dict[UUID, list[LoanDeduction]] | None = None,
        overtime: dict[UUID, list[OvertimeEntry]] | None = None,
        slabs: Sequence[TaxSlab] = tuple(WORKED_EXAMPLE_SLABS),
        profile: CompanyProfile | None = None,
    ):
        self.employees = list(employees)
        self.attendance = attendance or {}
        self.loans = loans or {}
        self.overtime = overtime or {}
        self.slabs = list(slabs)
        self.profile = profile
        self.runs: dict[UUID, tuple[NewPayrollRun, list[PaySlip]]] = {}
        self.failures_remaining = 0
        self.attendance_calls = 0
        # When set, the first attendance read waits on this event
        self.attendance_gate: asyncio.Event | None = None
        self.attendance_started = asyncio.Event()

    async def list_active_employees(self, company_id: UUID) -> list[Employee]:
        return list(self.employees)

    async def get_attendance_summary(
        self, employee_ids: Sequence[UUID], month: int, year: int
    ) -> dict[UUID, AttendanceSummary]:
        self.attendance_calls += 1
        gate, self.attendance_gate = self.attendance_gate, None
        if gate is not None:
            self.attendance_started.set()
            await gate.wait()
        return {i: self.attendance[i] for i in employee_ids if i in self.attendance}

    async def get_active_loan_deductions(
        self, employee_ids: Sequence[UUID]
    ) -> dict[UUID, list[LoanDeduction]]:
        return {i: self.loans[i] for i in employee_ids if i in self.loans}

    async def get_approved_overtime(
        self, employee_ids: Sequence[UUID], period_start: date, period_end: date
    ) -> dict[UUID, list[OvertimeEntry]]:
        return {i: self.overtime[i] for i in employee_ids if i in self.overtime}

    async def get_active_tax_slabs(self, company_id: UUID) -> list[TaxSlab]:
        return list(self.slabs)

    async def get_company_profile(self, company_id: UUID) -> CompanyProfile | None:
        return self.profile

    async def create_payroll_run(self, run: NewPayrollRun, payslips: Sequence[PaySlip]) -> UUID:
        if self.failures_remaining:
            self.failures_remaining -= 1
            raise PersistenceFailure("database unavailable")
        existing = await self.get_existing_run(run.company_id, run.period.start, run.period.end)
        if existing is not None:
            raise DuplicateRunForPeriod(run.company_id, run.period.start, run.period.end, existing)
        self.runs[run.run_id] = (run, list(payslips))
        return run.run_id

    async def get_existing_run(
        self, company_id: UUID, period_start: date, period_end: date
    ) -> UUID | None:
        for run_id, (run, _) in self.runs.items():
            if (run.company_id, run.period.start, run.period.end) == (
                company_id,
                period_start,
                period_end,
            ):
                return run_id
        return None


class FakeFlags:
    def __init__(self, **flags: bool):
        self.flags = flags

    async def is_feature_enabled(self, company_id: UUID, name: str) -> bool:
        return self.flags.get(name, False)


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def emit(self, event: DomainEvent) -> list[Exception]:
        self.events.append(event)
        return []


class FailingPublisher:
    def emit(self, event: DomainEvent) -> list[Exception]:
        raise RuntimeError("event bus down")


class RecordingTransport:
    """EmailTransport that records messages; addresses in ``fail_for`` raise."""

    def __init__(self, fail_for: Sequence[str] = ()) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_for = set(fail_for)

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        attachments: Sequence[tuple[str, bytes]] = (),
    ) -> None:
        if to in self.fail_for:
            raise ConnectionError("SMTP connection refused")
        self.sent.append((to, subject, body))


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# ============================================================================
# SQLite database
# ============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with all tables.

    A file database gives each session its own connection.
    """
    engine = create_async_engine(sqlite_url(tmp_path), echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def seeded(session_factory: async_sessionmaker[AsyncSession]) -> dict[str, Any]:
    """Company with three active employees for March 2024.

    - alice: 88000 basic, Engineering, 11 days present (adjusted basic 44000)
    - bob: 120000 basic, Finance, no attendance, opted out of payroll emails
    - carol: 50000 basic, no department, no email, active 5000/month loan
    - dave: terminated, never included
    """
    company = models.Company(
        name="Lanka Widgets (Pvt) Ltd",
        registration_number="PV 12345",
        epf_number="EPF/A/1234",
        etf_number="ETF/1234",
        bank_name="Commercial Bank",
        bank_account_number="1000123456",
    )
    alice = models.Employee(
        employee_number="E001",
        first_name="Alice",
        last_name="Perera",
        email="alice@example.com",
        department="Engineering",
        basic_salary=Decimal("88000"),
    )
    bob = models.Employee(
        employee_number="E002",
        first_name="Bob",
        last_name="Silva",
        email="bob@example.com",
        department="Finance",
        basic_salary=Decimal("120000"),
        notification_preferences={"email_payroll_updates": False},
    )
    carol = models.Employee(
        employee_number="E003",
        first_name="Carol",
        last_name="Fernando",
        basic_salary=Decimal("50000"),
    )
    dave = models.Employee(
        employee_number="E004",
        first_name="Dave",
        last_name="Jayasuriya",
        basic_salary=Decimal("70000"),
        status="terminated",
    )

    async with session_factory() as session:
        session.add(company)
        await session.flush()
        for employee in (alice, bob, carol, dave):
            employee.company_id = company.company_id
            session.add(employee)
        await session.flush()

        session.add(
            models.CompanyFeatureFlag(
                company_id=company.company_id, feature_name="loans_enabled", is_enabled=True
            )
        )
        for offset in range(11):
            session.add(
                models.AttendanceRecord(
                    employee_id=alice.employee_id,
                    work_date=date(2024, 3, 1) + timedelta(days=offset),
                    status="present",
                    hours_worked=Decimal("8"),
                )
            )
        session.add(
            models.Loan(
                employee_id=carol.employee_id,
                loan_type="salary_advance",
                principal_amount=Decimal("30000"),
                monthly_deduction=Decimal("5000"),
                outstanding_amount=Decimal("20000"),
                status="active",
            )
        )
        await session.commit()

    return {
        "company_id": company.company_id,
        "alice": alice.employee_id,
        "bob": bob.employee_id,
        "carol": carol.employee_id,
        "dave": dave.employee_id,
    }


# ============================================================================
# HTTP API
# ============================================================================


@pytest.fixture
def email_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    email_transport: RecordingTransport,
) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app(session_factory=session_factory, email_transport=email_transport)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
