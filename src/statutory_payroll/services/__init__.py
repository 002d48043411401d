"""Payroll run services: workflow, persistence and notifications."""

from statutory_payroll.services.company_profile import (
    CompanyProfile,
    ProfileCheck,
    check_company_profile,
)
from statutory_payroll.services.notifications import (
    LoggingEmailTransport,
    OutboxRelay,
    PayslipEmailService,
)
from statutory_payroll.services.ports import (
    NewPayrollRun,
    PayslipEmailRequest,
    PayslipEmailResult,
)
from statutory_payroll.services.state_machine import (
    PayrollRunStateMachine,
    PayrollRunStatus,
)
from statutory_payroll.services.store import RunNotFoundError, SqlPayrollStore
from statutory_payroll.services.workflow import (
    PayrollPreview,
    PayrollRunWorkflow,
    WorkflowState,
)

__all__ = [
    "CompanyProfile",
    "LoggingEmailTransport",
    "NewPayrollRun",
    "OutboxRelay",
    "PayrollPreview",
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "PayrollRunWorkflow",
    "PayslipEmailRequest",
    "PayslipEmailResult",
    "PayslipEmailService",
    "ProfileCheck",
    "RunNotFoundError",
    "SqlPayrollStore",
    "WorkflowState",
    "check_company_profile",
]
