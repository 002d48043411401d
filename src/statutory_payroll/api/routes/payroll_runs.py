"""Payroll run API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from statutory_payroll.api.dependencies import (
    ActorId,
    Builder,
    EmailService,
    Events,
    Store,
)
from statutory_payroll.api.schemas import (
    CommitResponse,
    ErrorResponse,
    PayrollRunRequest,
    PayrollRunResponse,
    PayslipEmailRequestBody,
    PayslipEmailResponse,
    PayslipListResponse,
    PayslipPreview,
    PayslipResponse,
    PreviewResponse,
    RunTotalsResponse,
    StatusTransitionRequest,
)
from statutory_payroll.calculators.payslip_builder import PayslipBuilder
from statutory_payroll.events.emitter import EventEmitter
from statutory_payroll.services.ports import PayslipEmailRequest
from statutory_payroll.services.store import SqlPayrollStore
from statutory_payroll.services.workflow import PayrollRunWorkflow

router = APIRouter(tags=["payroll-runs"])


async def _prepare_review(
    company_id: UUID,
    payload: PayrollRunRequest,
    store: SqlPayrollStore,
    builder: PayslipBuilder,
    events: EventEmitter,
    actor_id: UUID | None,
) -> PayrollRunWorkflow:
    """Drive a workflow from period selection to the review step."""
    workflow = PayrollRunWorkflow(
        company_id, store, store, builder, events=events, actor_id=actor_id
    )
    workflow.select_period(payload.month, payload.year, payload.pay_date)
    await workflow.advance()

    if payload.employee_ids is not None:
        workflow.deselect_all()
        for employee_id in dict.fromkeys(payload.employee_ids):
            workflow.toggle_employee(employee_id)
    for employee_id, amounts in payload.variable_amounts.items():
        workflow.set_variable_amounts(employee_id, amounts)

    await workflow.advance()
    return workflow


# ============================================================================
# Preview and commit
# ============================================================================


@router.post(
    "/companies/{company_id}/payroll-runs/preview",
    response_model=PreviewResponse,
    responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def preview_payroll_run(
    company_id: Annotated[UUID, Path()],
    payload: PayrollRunRequest,
    store: Store,
    builder: Builder,
    events: Events,
    actor_id: ActorId,
) -> PreviewResponse:
    """Calculate payslips and totals without saving anything."""
    workflow = await _prepare_review(company_id, payload, store, builder, events, actor_id)
    preview = workflow.preview
    names = {e.employee_id: e.full_name for e in workflow.employees}

    return PreviewResponse(
        company_id=company_id,
        period_start=preview.period.start,
        period_end=preview.period.end,
        pay_date=preview.period.pay_date,
        loans_enabled=preview.loans_enabled,
        overtime_enabled=preview.overtime_enabled,
        payslips=[
            PayslipPreview.from_payslip(p, names.get(p.employee_id)) for p in preview.payslips
        ],
        totals=RunTotalsResponse.from_totals(preview.totals),
    )


@router.post(
    "/companies/{company_id}/payroll-runs",
    response_model=CommitResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def commit_payroll_run(
    company_id: Annotated[UUID, Path()],
    payload: PayrollRunRequest,
    store: Store,
    builder: Builder,
    events: Events,
    actor_id: ActorId,
) -> CommitResponse:
    """Calculate and save a payroll run with all of its payslips."""
    workflow = await _prepare_review(company_id, payload, store, builder, events, actor_id)
    await workflow.advance()
    run_id = await workflow.commit()
    run = await store.get_run(run_id)

    return CommitResponse(
        payroll_run_id=run_id,
        status=run.status,
        totals=RunTotalsResponse.from_totals(workflow.preview.totals),
    )


# ============================================================================
# Committed runs
# ============================================================================


@router.get(
    "/payroll-runs/{payroll_run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    payroll_run_id: Annotated[UUID, Path()],
    store: Store,
) -> PayrollRunResponse:
    run = await store.get_run(payroll_run_id)
    return PayrollRunResponse.model_validate(run)


@router.get(
    "/payroll-runs/{payroll_run_id}/payslips",
    response_model=PayslipListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_payslips(
    payroll_run_id: Annotated[UUID, Path()],
    store: Store,
) -> PayslipListResponse:
    payslips = await store.list_payslips(payroll_run_id)
    return PayslipListResponse(
        items=[PayslipResponse.model_validate(p) for p in payslips],
        total=len(payslips),
    )


@router.post(
    "/payroll-runs/{payroll_run_id}/status",
    response_model=PayrollRunResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def transition_payroll_run(
    payroll_run_id: Annotated[UUID, Path()],
    payload: StatusTransitionRequest,
    store: Store,
    actor_id: ActorId,
) -> PayrollRunResponse:
    """Move a saved run along pending_approval -> approved -> paid."""
    run = await store.transition_status(payroll_run_id, payload.status, actor_id)
    return PayrollRunResponse.model_validate(run)


@router.post(
    "/payroll-runs/{payroll_run_id}/payslip-emails",
    response_model=PayslipEmailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def send_payslip_emails(
    payroll_run_id: Annotated[UUID, Path()],
    payload: PayslipEmailRequestBody,
    email_service: EmailService,
) -> PayslipEmailResponse:
    """Email payslips now, to everyone in the run or to selected employees."""
    request = PayslipEmailRequest(
        payroll_run_id=payroll_run_id,
        employee_ids=None if payload.employee_ids is None else tuple(payload.employee_ids),
    )
    result = await email_service.send_payslips(request)
    return PayslipEmailResponse(
        sent=result.sent,
        failed=result.failed,
        skipped=result.skipped,
        details=result.details,
    )
