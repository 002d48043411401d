"""SQLAlchemy ORM models."""

from statutory_payroll.models.base import Base, TimestampMixin
from statutory_payroll.models.company import Company, CompanyFeatureFlag, SalaryComponentRecord
from statutory_payroll.models.employee import (
    AttendanceRecord,
    Employee,
    Loan,
    OvertimeRecord,
    TaxSlabRecord,
)
from statutory_payroll.models.outbox import NotificationLog, OutboxEvent
from statutory_payroll.models.payroll import PayrollRun, Payslip

__all__ = [
    "AttendanceRecord",
    "Base",
    "Company",
    "CompanyFeatureFlag",
    "Employee",
    "Loan",
    "NotificationLog",
    "OutboxEvent",
    "OvertimeRecord",
    "PayrollRun",
    "Payslip",
    "SalaryComponentRecord",
    "TaxSlabRecord",
    "TimestampMixin",
]
