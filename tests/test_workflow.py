"""Tests for PayrollRunWorkflow against in-memory collaborators."""

import asyncio
import logging
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from statutory_payroll.calculators.payslip_builder import PayslipBuilder
from statutory_payroll.calculators.types import (
    AttendanceSummary,
    ComponentCategory,
    ComponentType,
    LoanDeduction,
    SalaryComponent,
    TaxSlab,
)
from statutory_payroll.events import PayrollRunCommitted
from statutory_payroll.exceptions import (
    DuplicateRunForPeriod,
    IncompleteCompanyProfile,
    InvalidPayPeriod,
    InvalidTaxTable,
    PersistenceFailure,
    PreviewOutdated,
    WorkflowStateError,
)
from statutory_payroll.services.workflow import PayrollRunWorkflow, WorkflowState
from tests.conftest import (
    FailingPublisher,
    FakeFlags,
    FakeStore,
    complete_profile,
    make_employee,
)


@pytest.fixture
def alice():
    return make_employee("88000", "Engineering", first_name="Alice")


@pytest.fixture
def bob():
    return make_employee("120000", "Finance", first_name="Bob")


@pytest.fixture
def store(company_id, alice, bob):
    return FakeStore(
        [alice, bob, make_employee("70000", status="terminated")],
        attendance={alice.employee_id: AttendanceSummary(worked_days=Decimal("11"))},
        loans={bob.employee_id: [LoanDeduction(uuid4(), "personal_loan", Decimal("10000"))]},
        profile=complete_profile(company_id),
    )


@pytest.fixture
def workflow(company_id, store, publisher):
    return PayrollRunWorkflow(company_id, store, FakeFlags(), events=publisher)


async def _to_review(workflow, month=3, year=2024):
    workflow.select_period(month, year)
    await workflow.advance()
    await workflow.advance()
    return workflow


async def _to_confirm(workflow):
    await _to_review(workflow)
    await workflow.advance()
    return workflow


class TestPeriodSelection:
    def test_pay_date_defaults_to_month_end(self, workflow):
        period = workflow.select_period(2, 2024)

        assert period.start == date(2024, 2, 1)
        assert period.end == date(2024, 2, 29)
        assert period.pay_date == date(2024, 2, 29)

    def test_explicit_pay_date(self, workflow):
        period = workflow.select_period(3, 2024, pay_date=date(2024, 3, 25))
        assert period.pay_date == date(2024, 3, 25)

    @pytest.mark.parametrize("month, year", [(0, 2024), (13, 2024), (1, 0)])
    def test_invalid_period(self, workflow, month, year):
        with pytest.raises(InvalidPayPeriod):
            workflow.select_period(month, year)
        assert workflow.period is None

    async def test_advance_requires_period(self, workflow):
        with pytest.raises(WorkflowStateError):
            await workflow.advance()
        assert workflow.state == WorkflowState.SELECTING_PERIOD


class TestEmployeeSelection:
    async def test_loads_eligible_employees_all_selected(self, workflow, alice, bob):
        workflow.select_period(3, 2024)
        state = await workflow.advance()

        assert state == WorkflowState.SELECTING_EMPLOYEES
        assert [e.employee_id for e in workflow.employees] == [alice.employee_id, bob.employee_id]
        assert workflow.selected_employee_ids == [alice.employee_id, bob.employee_id]

    async def test_toggle_and_bulk_selection(self, workflow, alice, bob):
        workflow.select_period(3, 2024)
        await workflow.advance()

        assert workflow.toggle_employee(alice.employee_id) is False
        assert workflow.selected_employee_ids == [bob.employee_id]
        assert workflow.toggle_employee(alice.employee_id) is True

        workflow.deselect_all()
        assert workflow.selected_employee_ids == []
        workflow.select_all()
        assert len(workflow.selected_employee_ids) == 2

    async def test_toggle_unknown_employee(self, workflow):
        workflow.select_period(3, 2024)
        await workflow.advance()

        with pytest.raises(WorkflowStateError):
            workflow.toggle_employee(uuid4())

    async def test_cannot_advance_with_empty_selection(self, workflow):
        workflow.select_period(3, 2024)
        await workflow.advance()
        workflow.deselect_all()

        with pytest.raises(WorkflowStateError):
            await workflow.advance()
        assert workflow.state == WorkflowState.SELECTING_EMPLOYEES

    async def test_selection_locked_outside_employee_step(self, workflow, alice):
        await _to_review(workflow)

        with pytest.raises(WorkflowStateError):
            workflow.toggle_employee(alice.employee_id)
        with pytest.raises(WorkflowStateError):
            workflow.select_period(4, 2024)


class TestPreview:
    async def test_preview_figures(self, workflow, alice, bob):
        await _to_review(workflow)
        preview = workflow.preview

        assert workflow.state == WorkflowState.REVIEWING_CALCULATIONS
        assert [p.employee_id for p in preview.payslips] == [alice.employee_id, bob.employee_id]
        assert preview.payslips[0].net_salary == Decimal("40480")
        # Loans are off by default, so Bob's loan is not deducted
        assert preview.loans_enabled is False
        assert preview.payslips[1].net_salary == Decimal("109776")
        assert preview.totals.employee_count == 2
        assert preview.totals.total_net == Decimal("150256")

    async def test_loans_flag(self, company_id, store, bob):
        workflow = PayrollRunWorkflow(company_id, store, FakeFlags(loans_enabled=True))
        await _to_review(workflow)

        bob_slip = workflow.preview.payslips[1]
        assert bob_slip.employee_id == bob.employee_id
        assert bob_slip.net_salary == Decimal("99776")

    async def test_negative_net_flagged(self, company_id):
        employee = make_employee("10000")
        store = FakeStore(
            [employee],
            loans={employee.employee_id: [LoanDeduction(uuid4(), "salary_advance", Decimal("20000"))]},
            profile=complete_profile(company_id),
        )
        workflow = PayrollRunWorkflow(company_id, store, FakeFlags(loans_enabled=True))
        await _to_review(workflow)

        assert [p.employee_id for p in workflow.preview.negative_net] == [employee.employee_id]

    async def test_variable_amounts_flow_into_preview(self, company_id, store, alice):
        builder = PayslipBuilder(
            components=[
                SalaryComponent("Bonus", ComponentType.ALLOWANCE, ComponentCategory.VARIABLE)
            ]
        )
        workflow = PayrollRunWorkflow(company_id, store, FakeFlags(), builder)
        workflow.select_period(3, 2024)
        await workflow.advance()
        workflow.set_variable_amounts(alice.employee_id, {"Bonus": Decimal("5000")})
        await workflow.advance()

        alice_slip = workflow.preview.payslips[0]
        assert [a.name for a in alice_slip.allowances] == ["Bonus"]
        assert alice_slip.gross_salary == Decimal("49000")
        assert workflow.preview.payslips[1].allowances == ()

    async def test_invalid_tax_table_blocks_review(self, company_id, store):
        store.slabs = [TaxSlab(Decimal("0"), Decimal("100000"), Decimal("0"))]
        workflow = PayrollRunWorkflow(company_id, store, FakeFlags())
        workflow.select_period(3, 2024)
        await workflow.advance()

        with pytest.raises(InvalidTaxTable):
            await workflow.advance()
        assert workflow.state == WorkflowState.SELECTING_EMPLOYEES
        assert workflow.preview is None

    async def test_selection_change_during_derivation_restarts(self, workflow, store, alice, bob):
        workflow.select_period(3, 2024)
        await workflow.advance()

        gate = asyncio.Event()
        store.attendance_gate = gate
        task = asyncio.create_task(workflow.refresh_preview())
        await store.attendance_started.wait()

        # Deselect Alice while the first derivation is waiting on attendance
        workflow.toggle_employee(alice.employee_id)
        gate.set()
        preview = await task

        assert store.attendance_calls == 2
        assert [p.employee_id for p in preview.payslips] == [bob.employee_id]
        assert workflow.preview is preview
        assert preview.totals.employee_count == 1

    async def test_selection_cleared_during_advance_blocks_review(self, workflow, store):
        workflow.select_period(3, 2024)
        await workflow.advance()

        gate = asyncio.Event()
        store.attendance_gate = gate
        task = asyncio.create_task(workflow.advance())
        await store.attendance_started.wait()

        workflow.deselect_all()
        gate.set()

        with pytest.raises(WorkflowStateError, match="no employees selected"):
            await task
        assert store.attendance_calls == 2
        assert workflow.state == WorkflowState.SELECTING_EMPLOYEES
        assert workflow.preview is None


class TestNavigation:
    async def test_back_from_review_keeps_selection(self, workflow, alice, bob):
        await _to_review(workflow)
        workflow_state = workflow.back()

        assert workflow_state == WorkflowState.SELECTING_EMPLOYEES
        assert workflow.preview is None
        assert workflow.selected_employee_ids == [alice.employee_id, bob.employee_id]

    async def test_back_from_employees_clears_selection(self, workflow):
        workflow.select_period(3, 2024)
        await workflow.advance()
        workflow.back()

        assert workflow.state == WorkflowState.SELECTING_PERIOD
        assert workflow.employees == []
        assert workflow.selected_employee_ids == []
        assert workflow.period is not None

    async def test_back_from_confirm_keeps_preview(self, workflow):
        await _to_confirm(workflow)
        preview = workflow.preview
        workflow.back()

        assert workflow.state == WorkflowState.REVIEWING_CALCULATIONS
        assert workflow.profile_check is None
        assert workflow.preview is preview

    def test_back_from_first_step(self, workflow):
        with pytest.raises(WorkflowStateError):
            workflow.back()

    async def test_advance_from_confirm_requires_commit(self, workflow):
        await _to_confirm(workflow)

        with pytest.raises(WorkflowStateError):
            await workflow.advance()


class TestCommit:
    async def test_commit_persists_and_publishes(self, workflow, store, publisher, alice, bob):
        await _to_confirm(workflow)
        assert workflow.profile_check.is_complete

        run_id = await workflow.commit()

        assert workflow.state == WorkflowState.COMMITTED
        assert workflow.run_id == run_id
        run, payslips = store.runs[run_id]
        assert run.status == "pending_approval"
        assert run.employee_ids == (alice.employee_id, bob.employee_id)
        assert len(payslips) == 2

        assert len(publisher.events) == 1
        event = publisher.events[0]
        assert isinstance(event, PayrollRunCommitted)
        assert event.payroll_run_id == run_id
        assert event.total_net == Decimal("150256")
        assert event.metadata.event_id == run.committed_event.metadata.event_id

    async def test_attendance_change_after_review_is_not_committed_stale(
        self, company_id, publisher
    ):
        employee = make_employee("88000")
        store = FakeStore([employee], profile=complete_profile(company_id))
        workflow = PayrollRunWorkflow(company_id, store, FakeFlags(), events=publisher)
        await _to_confirm(workflow)
        assert workflow.preview.payslips[0].basic_salary == Decimal("88000")

        store.attendance[employee.employee_id] = AttendanceSummary(worked_days=Decimal("11"))
        with pytest.raises(PreviewOutdated) as exc_info:
            await workflow.commit()

        assert exc_info.value.changed_employee_ids == [employee.employee_id]
        assert workflow.state == WorkflowState.REVIEWING_CALCULATIONS
        assert workflow.profile_check is None
        assert workflow.preview.payslips[0].basic_salary == Decimal("44000")
        assert store.runs == {}
        assert publisher.events == []

        await workflow.advance()
        run_id = await workflow.commit()

        _, payslips = store.runs[run_id]
        assert payslips[0].basic_salary == Decimal("44000")

    async def test_unchanged_inputs_commit_reviewed_figures(self, workflow, store):
        await _to_confirm(workflow)
        reviewed = workflow.preview

        run_id = await workflow.commit()

        _, payslips = store.runs[run_id]
        assert [p.fingerprint for p in payslips] == [p.fingerprint for p in reviewed.payslips]

    async def test_employees_gone_after_review_blocks_commit(self, company_id):
        employee = make_employee("88000")
        store = FakeStore([employee], profile=complete_profile(company_id))
        workflow = PayrollRunWorkflow(company_id, store, FakeFlags())
        await _to_confirm(workflow)

        store.employees = []
        with pytest.raises(PreviewOutdated):
            await workflow.commit()

        assert workflow.preview.payslips == ()
        with pytest.raises(WorkflowStateError):
            await workflow.advance()
        assert workflow.state == WorkflowState.REVIEWING_CALCULATIONS
        assert store.runs == {}

    async def test_commit_only_from_confirm(self, workflow):
        await _to_review(workflow)

        with pytest.raises(WorkflowStateError):
            await workflow.commit()

    async def test_committed_is_terminal(self, workflow):
        await _to_confirm(workflow)
        await workflow.commit()

        with pytest.raises(WorkflowStateError):
            await workflow.advance()
        with pytest.raises(WorkflowStateError):
            workflow.back()
        with pytest.raises(WorkflowStateError):
            await workflow.commit()

    async def test_incomplete_profile_blocks_commit(self, workflow, store):
        store.profile = None
        await _to_confirm(workflow)
        assert not workflow.profile_check.is_complete

        with pytest.raises(IncompleteCompanyProfile) as exc_info:
            await workflow.commit()

        assert "epf_number" in exc_info.value.missing_fields
        assert workflow.state == WorkflowState.CONFIRMING_AND_PROCESSING
        assert store.runs == {}

    async def test_profile_fixed_before_commit(self, workflow, store, company_id):
        store.profile = None
        await _to_confirm(workflow)
        store.profile = complete_profile(company_id)

        await workflow.commit()
        assert workflow.state == WorkflowState.COMMITTED

    async def test_duplicate_period(self, company_id, store, workflow):
        first = await _to_confirm(PayrollRunWorkflow(company_id, store, FakeFlags()))
        existing = await first.commit()

        await _to_confirm(workflow)
        with pytest.raises(DuplicateRunForPeriod) as exc_info:
            await workflow.commit()

        assert exc_info.value.existing_run_id == existing
        assert workflow.state == WorkflowState.CONFIRMING_AND_PROCESSING
        assert len(store.runs) == 1

    async def test_other_month_is_not_duplicate(self, company_id, store, workflow):
        first = PayrollRunWorkflow(company_id, store, FakeFlags())
        first.select_period(2, 2024)
        await first.advance()
        await first.advance()
        await first.advance()
        await first.commit()

        await _to_confirm(workflow)
        await workflow.commit()
        assert len(store.runs) == 2

    async def test_persistence_failure_can_be_retried(self, workflow, store, publisher, caplog):
        await _to_confirm(workflow)
        store.failures_remaining = 1

        with caplog.at_level(logging.WARNING):
            with pytest.raises(PersistenceFailure):
                await workflow.commit()

        assert workflow.state == WorkflowState.CONFIRMING_AND_PROCESSING
        assert workflow.run_id is None
        assert store.runs == {}
        assert publisher.events == []
        assert "commit can be retried" in caplog.text

        run_id = await workflow.commit()
        assert run_id in store.runs
        assert workflow.state == WorkflowState.COMMITTED

    async def test_publisher_failure_does_not_fail_commit(self, company_id, store, caplog):
        workflow = PayrollRunWorkflow(company_id, store, FakeFlags(), events=FailingPublisher())
        await _to_confirm(workflow)

        run_id = await workflow.commit()

        assert run_id in store.runs
        assert workflow.state == WorkflowState.COMMITTED
        assert "Failed to publish PayrollRunCommitted" in caplog.text
