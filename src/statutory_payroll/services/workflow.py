"""Payroll run workflow: period -> employees -> review -> confirm -> committed.

The workflow owns the in-progress state of one payroll run for one company.
Calculation is delegated to PayslipBuilder and RunAggregator; everything it
reads or writes goes through the collaborator ports.

Preview derivation is restartable. Every input change (selection, variable
amounts, navigation) bumps an input version; a derivation that finishes
against an older version is discarded and redone from the latest inputs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from statutory_payroll.calculators.aggregator import RunAggregator, RunTotals
from statutory_payroll.calculators.payslip_builder import PayslipBuilder
from statutory_payroll.calculators.types import Employee, PayPeriod, PaySlip, TaxSlab
from statutory_payroll.exceptions import (
    DuplicateRunForPeriod,
    InvalidPayPeriod,
    InvalidTransitionError,
    PersistenceFailure,
    PreviewOutdated,
    WorkflowStateError,
)
from statutory_payroll.events.types import DomainEvent
from statutory_payroll.services.company_profile import ProfileCheck, check_company_profile
from statutory_payroll.services.ports import (
    LOANS_ENABLED,
    OVERTIME_ENABLED,
    EventPublisher,
    FeatureFlags,
    NewPayrollRun,
    PayrollStore,
)
from statutory_payroll.services.state_machine import PayrollRunStateMachine

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    SELECTING_PERIOD = "selecting_period"
    SELECTING_EMPLOYEES = "selecting_employees"
    REVIEWING_CALCULATIONS = "reviewing_calculations"
    CONFIRMING_AND_PROCESSING = "confirming_and_processing"
    COMMITTED = "committed"


@dataclass(frozen=True)
class PayrollPreview:
    """Payslips and totals derived for the current selection."""

    period: PayPeriod
    payslips: tuple[PaySlip, ...]
    totals: RunTotals
    tax_slabs: tuple[TaxSlab, ...]
    loans_enabled: bool
    overtime_enabled: bool
    input_version: int

    @property
    def negative_net(self) -> tuple[PaySlip, ...]:
        """Payslips whose deductions exceed gross, for review."""
        return tuple(p for p in self.payslips if p.has_negative_net)


class PayrollRunWorkflow:
    """Drives one payroll run from period selection to commit.

    Allowed moves (adjacent only, COMMITTED is terminal):
    - selecting_period <-> selecting_employees
    - selecting_employees <-> reviewing_calculations
    - reviewing_calculations <-> confirming_and_processing
    - confirming_and_processing -> committed
    """

    VALID_TRANSITIONS: dict[WorkflowState, list[WorkflowState]] = {
        WorkflowState.SELECTING_PERIOD: [WorkflowState.SELECTING_EMPLOYEES],
        WorkflowState.SELECTING_EMPLOYEES: [
            WorkflowState.SELECTING_PERIOD,
            WorkflowState.REVIEWING_CALCULATIONS,
        ],
        WorkflowState.REVIEWING_CALCULATIONS: [
            WorkflowState.SELECTING_EMPLOYEES,
            WorkflowState.CONFIRMING_AND_PROCESSING,
        ],
        WorkflowState.CONFIRMING_AND_PROCESSING: [
            WorkflowState.REVIEWING_CALCULATIONS,
            WorkflowState.COMMITTED,
        ],
        WorkflowState.COMMITTED: [],  # Terminal state
    }

    PREVIOUS: dict[WorkflowState, WorkflowState] = {
        WorkflowState.SELECTING_EMPLOYEES: WorkflowState.SELECTING_PERIOD,
        WorkflowState.REVIEWING_CALCULATIONS: WorkflowState.SELECTING_EMPLOYEES,
        WorkflowState.CONFIRMING_AND_PROCESSING: WorkflowState.REVIEWING_CALCULATIONS,
    }

    def __init__(
        self,
        company_id: UUID,
        store: PayrollStore,
        flags: FeatureFlags,
        builder: PayslipBuilder | None = None,
        *,
        aggregator: RunAggregator | None = None,
        events: EventPublisher | None = None,
        actor_id: UUID | None = None,
    ):
        self.company_id = company_id
        self.store = store
        self.flags = flags
        self.builder = builder or PayslipBuilder()
        self.aggregator = aggregator or RunAggregator()
        self.events = events
        self.actor_id = actor_id

        self._state = WorkflowState.SELECTING_PERIOD
        self._period: PayPeriod | None = None
        self._employees: list[Employee] = []
        self._selected: set[UUID] = set()
        self._variable_amounts: dict[UUID, dict[str, Any]] = {}
        self._preview: PayrollPreview | None = None
        self._profile_check: ProfileCheck | None = None
        self._run_id: UUID | None = None
        self._inputs_version = 0

    # ----- Read-only views -----

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def period(self) -> PayPeriod | None:
        return self._period

    @property
    def employees(self) -> list[Employee]:
        return list(self._employees)

    @property
    def selected_employee_ids(self) -> list[UUID]:
        """Selected ids in employee list order."""
        return [e.employee_id for e in self._employees if e.employee_id in self._selected]

    @property
    def preview(self) -> PayrollPreview | None:
        return self._preview

    @property
    def profile_check(self) -> ProfileCheck | None:
        return self._profile_check

    @property
    def run_id(self) -> UUID | None:
        return self._run_id

    # ----- Period -----

    def select_period(self, month: int, year: int, pay_date: date | None = None) -> PayPeriod:
        """Choose the calendar month to pay. Pay date defaults to month end."""
        self._require_state(WorkflowState.SELECTING_PERIOD, "select period")
        if not 1 <= month <= 12:
            raise InvalidPayPeriod(f"month {month} is not between 1 and 12")
        try:
            period = PayPeriod.for_month(year, month, pay_date or date(year, month, 1))
        except ValueError as exc:
            raise InvalidPayPeriod(str(exc)) from exc
        if pay_date is None:
            period = PayPeriod(period.start, period.end, period.end)

        self._period = period
        self._touch()
        return period

    # ----- Employee selection -----

    def toggle_employee(self, employee_id: UUID) -> bool:
        """Flip selection of one employee; returns whether it is now selected."""
        self._require_state(WorkflowState.SELECTING_EMPLOYEES, "change selection")
        if employee_id not in {e.employee_id for e in self._employees}:
            raise WorkflowStateError(
                self._state.value, "change selection", f"unknown employee {employee_id}"
            )
        if employee_id in self._selected:
            self._selected.discard(employee_id)
        else:
            self._selected.add(employee_id)
        self._touch()
        return employee_id in self._selected

    def select_all(self) -> None:
        self._require_state(WorkflowState.SELECTING_EMPLOYEES, "change selection")
        self._selected = {e.employee_id for e in self._employees}
        self._touch()

    def deselect_all(self) -> None:
        self._require_state(WorkflowState.SELECTING_EMPLOYEES, "change selection")
        self._selected = set()
        self._touch()

    def set_variable_amounts(self, employee_id: UUID, amounts: Mapping[str, Any]) -> None:
        """Per-run amounts for variable components, keyed by component name."""
        self._require_state(WorkflowState.SELECTING_EMPLOYEES, "set variable amounts")
        self._variable_amounts[employee_id] = dict(amounts)
        self._touch()

    # ----- Navigation -----

    async def advance(self) -> WorkflowState:
        """Move to the next step, loading whatever that step needs."""
        state = self._state

        if state == WorkflowState.SELECTING_PERIOD:
            if self._period is None:
                raise WorkflowStateError(state.value, "advance", "no pay period selected")
            employees = await self.store.list_active_employees(self.company_id)
            self._require_state(state, "advance")
            self._employees = [e for e in employees if e.is_eligible]
            self._selected = {e.employee_id for e in self._employees}
            self._touch()
            self._move(WorkflowState.SELECTING_EMPLOYEES)

        elif state == WorkflowState.SELECTING_EMPLOYEES:
            if not self._selected:
                raise WorkflowStateError(state.value, "advance", "no employees selected")
            preview = await self.refresh_preview()
            self._require_state(state, "advance")
            # Selection may have been cleared while the preview was derived
            if not preview.payslips:
                self._preview = None
                raise WorkflowStateError(state.value, "advance", "no employees selected")
            self._move(WorkflowState.REVIEWING_CALCULATIONS)

        elif state == WorkflowState.REVIEWING_CALCULATIONS:
            if self._preview is None or not self._preview.payslips:
                raise WorkflowStateError(state.value, "advance", "no calculations to review")
            check = await self._check_profile()
            self._require_state(state, "advance")
            self._profile_check = check
            self._move(WorkflowState.CONFIRMING_AND_PROCESSING)

        elif state == WorkflowState.CONFIRMING_AND_PROCESSING:
            raise WorkflowStateError(state.value, "advance", "use commit() to finish the run")

        else:
            raise WorkflowStateError(state.value, "advance", "the run is already committed")

        return self._state

    def back(self) -> WorkflowState:
        """Return to the previous step, discarding only later-step data."""
        previous = self.PREVIOUS.get(self._state)
        if previous is None:
            raise WorkflowStateError(self._state.value, "go back")

        if self._state == WorkflowState.CONFIRMING_AND_PROCESSING:
            self._profile_check = None
        elif self._state == WorkflowState.REVIEWING_CALCULATIONS:
            self._preview = None
        elif self._state == WorkflowState.SELECTING_EMPLOYEES:
            self._employees = []
            self._selected = set()
            self._variable_amounts = {}
            self._preview = None

        self._touch()
        self._move(previous)
        return self._state

    # ----- Preview -----

    async def refresh_preview(self) -> PayrollPreview:
        """Derive payslips and totals for the current selection.

        Restarts whenever inputs change while a derivation is in flight, so
        the stored preview always matches the latest inputs.
        """
        while True:
            self._require_state(
                (WorkflowState.SELECTING_EMPLOYEES, WorkflowState.REVIEWING_CALCULATIONS),
                "calculate",
            )
            version = self._inputs_version
            preview = await self._derive_preview(version)
            if version == self._inputs_version:
                self._preview = preview
                return preview
            logger.debug(
                "Inputs changed during preview derivation (v%d -> v%d); recomputing",
                version,
                self._inputs_version,
            )

    async def _derive_preview(self, version: int) -> PayrollPreview:
        period = self._period
        if period is None:
            raise WorkflowStateError(self._state.value, "calculate", "no pay period selected")
        selected = [e for e in self._employees if e.employee_id in self._selected]
        variable_amounts = {k: dict(v) for k, v in self._variable_amounts.items()}
        ids = [e.employee_id for e in selected]

        loans_enabled, overtime_enabled = await asyncio.gather(
            self.flags.is_feature_enabled(self.company_id, LOANS_ENABLED),
            self.flags.is_feature_enabled(self.company_id, OVERTIME_ENABLED),
        )
        attendance, loans, overtime, slabs = await asyncio.gather(
            self.store.get_attendance_summary(ids, period.month, period.year),
            self.store.get_active_loan_deductions(ids),
            self.store.get_approved_overtime(ids, period.start, period.end),
            self.store.get_active_tax_slabs(self.company_id),
        )

        payslips = tuple(
            self.builder.build(
                employee,
                period,
                tax_slabs=slabs,
                attendance=attendance.get(employee.employee_id),
                loans=loans.get(employee.employee_id, ()),
                loans_enabled=loans_enabled,
                overtime=overtime.get(employee.employee_id, ()),
                overtime_enabled=overtime_enabled,
                variable_amounts=variable_amounts.get(employee.employee_id),
            )
            for employee in selected
        )
        return PayrollPreview(
            period=period,
            payslips=payslips,
            totals=self.aggregator.aggregate(payslips),
            tax_slabs=tuple(slabs),
            loans_enabled=loans_enabled,
            overtime_enabled=overtime_enabled,
            input_version=version,
        )

    # ----- Commit -----

    async def commit(self) -> UUID:
        """Persist the run and its payslips atomically.

        Payslips are recalculated from current data first; if any differ
        from the reviewed ones the workflow returns to review with the new
        figures and PreviewOutdated is raised.

        Raises IncompleteCompanyProfile or DuplicateRunForPeriod when blocked.
        On PersistenceFailure the workflow stays in confirmation so the
        caller can retry.
        """
        state = WorkflowState.CONFIRMING_AND_PROCESSING
        self._require_state(state, "commit")
        preview = self._preview
        period = self._period
        if preview is None or period is None:
            raise WorkflowStateError(state.value, "commit", "no calculations to commit")
        if not preview.payslips:
            raise WorkflowStateError(state.value, "commit", "no payslips to commit")

        self._profile_check = await self._check_profile()
        self._profile_check.raise_if_incomplete()

        existing = await self.store.get_existing_run(self.company_id, period.start, period.end)
        if existing is not None:
            raise DuplicateRunForPeriod(self.company_id, period.start, period.end, existing)

        await self._ensure_preview_current(preview)

        run = NewPayrollRun(
            company_id=self.company_id,
            period=period,
            employee_ids=tuple(p.employee_id for p in preview.payslips),
            totals=preview.totals,
            status=PayrollRunStateMachine.commit_path()[-1],
            created_by=self.actor_id,
        )
        try:
            run_id = await self.store.create_payroll_run(run, preview.payslips)
        except PersistenceFailure:
            logger.warning(
                "Payroll run for company %s (%s) not saved; commit can be retried",
                self.company_id,
                period.start.strftime("%Y-%m"),
            )
            raise

        self._run_id = run_id
        self._move(WorkflowState.COMMITTED)
        self._publish(run.committed_event)
        return run_id

    # ----- Internals -----

    async def _ensure_preview_current(self, reviewed: PayrollPreview) -> None:
        """Recalculate from the store and compare payslip fingerprints."""
        state = WorkflowState.CONFIRMING_AND_PROCESSING
        employees = await self.store.list_active_employees(self.company_id)
        self._require_state(state, "commit")
        self._employees = [e for e in employees if e.is_eligible]
        self._selected &= {e.employee_id for e in self._employees}

        current = await self._derive_preview(self._inputs_version)
        self._require_state(state, "commit")

        before = {p.employee_id: p.fingerprint for p in reviewed.payslips}
        after = {p.employee_id: p.fingerprint for p in current.payslips}
        changed = [i for i in dict.fromkeys([*before, *after]) if before.get(i) != after.get(i)]
        if not changed:
            return

        logger.info(
            "Payslips for %d employee(s) changed since review of company %s; back to review",
            len(changed),
            self.company_id,
        )
        self._preview = current
        self._profile_check = None
        self._touch()
        self._move(WorkflowState.REVIEWING_CALCULATIONS)
        raise PreviewOutdated(changed)

    async def _check_profile(self) -> ProfileCheck:
        profile = await self.store.get_company_profile(self.company_id)
        return check_company_profile(profile)

    def _publish(self, event: DomainEvent) -> None:
        """Fire-and-forget: publishing never fails the committed run."""
        if self.events is None:
            return
        try:
            self.events.emit(event)
        except Exception:
            logger.exception("Failed to publish %s", event.event_type)

    def _touch(self) -> None:
        self._inputs_version += 1

    def _move(self, to_state: WorkflowState) -> None:
        if to_state not in self.VALID_TRANSITIONS[self._state]:
            raise InvalidTransitionError(self._state.value, to_state.value)
        logger.debug("Workflow %s: %s -> %s", self.company_id, self._state.value, to_state.value)
        self._state = to_state

    def _require_state(
        self, allowed: WorkflowState | tuple[WorkflowState, ...], operation: str
    ) -> None:
        states = allowed if isinstance(allowed, tuple) else (allowed,)
        if self._state not in states:
            raise WorkflowStateError(self._state.value, operation)
