"""Company statutory profile completeness check."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import UUID

from statutory_payroll.exceptions import IncompleteCompanyProfile

# Field name -> label shown to the user
REQUIRED_FIELDS: dict[str, str] = {
    "name": "Company Name",
    "registration_number": "Business Registration Number",
    "epf_number": "EPF Registration Number",
    "etf_number": "ETF Registration Number",
    "bank_name": "Bank Name",
    "bank_account_number": "Bank Account Number",
}

RECOMMENDED_FIELDS: dict[str, str] = {
    "address": "Address",
    "phone": "Phone",
    "email": "Email",
}


@dataclass(frozen=True)
class CompanyProfile:
    """Statutory and banking details printed on payslips and returns."""

    company_id: UUID
    name: str | None = None
    registration_number: str | None = None
    epf_number: str | None = None
    etf_number: str | None = None
    bank_name: str | None = None
    bank_account_number: str | None = None
    address: str | None = None
    phone: str | None = None
    email: str | None = None

    @classmethod
    def from_mapping(cls, company_id: UUID, data: Mapping[str, Any]) -> CompanyProfile:
        names = set(REQUIRED_FIELDS) | set(RECOMMENDED_FIELDS)
        return cls(company_id=company_id, **{k: data.get(k) for k in names})


@dataclass(frozen=True)
class ProfileCheck:
    """Outcome of checking a company profile before commit."""

    missing_required: list[str] = field(default_factory=list)
    missing_recommended: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.missing_required

    @property
    def missing_labels(self) -> list[str]:
        return [REQUIRED_FIELDS[name] for name in self.missing_required]

    def raise_if_incomplete(self) -> None:
        if not self.is_complete:
            raise IncompleteCompanyProfile(self.missing_required, self.missing_labels)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def check_company_profile(profile: CompanyProfile | None) -> ProfileCheck:
    """Report missing required and recommended fields.

    A missing profile is reported as missing every required field.
    """
    if profile is None:
        return ProfileCheck(
            missing_required=list(REQUIRED_FIELDS),
            missing_recommended=list(RECOMMENDED_FIELDS),
        )
    return ProfileCheck(
        missing_required=[f for f in REQUIRED_FIELDS if _is_blank(getattr(profile, f))],
        missing_recommended=[
            f for f in RECOMMENDED_FIELDS if _is_blank(getattr(profile, f))
        ],
    )
