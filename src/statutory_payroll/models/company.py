"""Company, feature flag and salary component models."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from statutory_payroll.models.base import Base, TimestampMixin


class Company(Base, TimestampMixin):
    """Employer with its statutory registration and banking details."""

    __tablename__ = "company"

    company_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    registration_number: Mapped[str | None] = mapped_column(String, nullable=True)
    epf_number: Mapped[str | None] = mapped_column(String, nullable=True)
    etf_number: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)

    feature_flags: Mapped[list[CompanyFeatureFlag]] = relationship(
        back_populates="company", cascade="all, delete-orphan"
    )


class CompanyFeatureFlag(Base, TimestampMixin):
    """Per-company feature switch (loans_enabled, overtime_enabled)."""

    __tablename__ = "company_feature_flags"

    flag_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"), nullable=False
    )
    feature_name: Mapped[str] = mapped_column(String, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("company_id", "feature_name", name="company_feature_unique"),
    )

    company: Mapped[Company] = relationship(back_populates="feature_flags")


class SalaryComponentRecord(Base, TimestampMixin):
    """Company-configured allowance or deduction applied to every payslip.

    ``calculation_type`` is fixed (``value`` is an amount), percentage
    (``value`` is a percent of the prorated basic) or variable (amount
    entered per run).
    """

    __tablename__ = "salary_component"

    component_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    component_type: Mapped[str] = mapped_column(String, nullable=False)
    calculation_type: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_epf_applicable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="salary_component_name_unique"),
        CheckConstraint(
            "component_type IN ('allowance', 'deduction')", name="salary_component_type_check"
        ),
        CheckConstraint(
            "calculation_type IN ('fixed', 'percentage', 'variable')",
            name="salary_component_calculation_check",
        ),
        CheckConstraint("value >= 0", name="salary_component_value_check"),
    )
