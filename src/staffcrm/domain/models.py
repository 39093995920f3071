from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import date
from enum import Enum
from typing import Any

from staffcrm.domain import rules
from staffcrm.domain.stages import ActivityType, CompanyStatus, ContactMethod, LeadScore


@dataclass(frozen=True)
class Company:
    company_id: str
    company_name: str
    company_status: str
    industry: str | None = None
    company_size: str | None = None
    annual_revenue: str | None = None
    company_website: str | None = None
    street_number: str | None = None
    street_name: str | None = None
    apt_suite: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    lead_source: str | None = None
    lead_score: str | None = None
    expected_close_date: str | None = None
    staffing_needs_overview: str | None = None
    immediate_positions: int | None = None
    annual_positions: int | None = None
    opportunity_value: float | None = None
    position_names: str | None = None
    position_type: str | None = None
    additional_staffing_details: str | None = None
    created_date: str | None = None
    updated_date: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Company:
        return cls(**_known(cls, row))


@dataclass(frozen=True)
class CompanyContact:
    contact_id: str
    company_id: str
    contact_first_name: str
    contact_last_name: str
    contact_email: str
    preferred_contact_method: str
    contact_job_title: str | None = None
    contact_phone: str | None = None
    contact_mobile: str | None = None
    is_primary_contact: bool = False
    is_decision_maker: bool = False
    is_active_contact: bool = True
    created_date: str | None = None
    updated_date: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CompanyContact:
        values = _known(cls, row)
        for flag in ("is_primary_contact", "is_decision_maker", "is_active_contact"):
            if values.get(flag) is not None:
                values[flag] = bool(values[flag])
        return cls(**values)

    @property
    def full_name(self) -> str:
        return f"{self.contact_first_name} {self.contact_last_name}"


@dataclass(frozen=True)
class CompanyNote:
    note_id: str
    company_id: str
    note_text: str
    created_by_name: str
    created_date: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CompanyNote:
        return cls(**_known(cls, row))


@dataclass(frozen=True)
class CompanyActivity:
    activity_id: str
    company_id: str
    activity_type: str
    activity_notes: str
    created_by_name: str
    follow_up_date: str | None = None
    created_date: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> CompanyActivity:
        return cls(**_known(cls, row))


@dataclass(frozen=True)
class CompanySummary:
    company: Company
    contacts: list[CompanyContact] = field(default_factory=list)


@dataclass(frozen=True)
class CompanyDetail:
    company: Company
    contacts: list[CompanyContact] = field(default_factory=list)
    notes: list[CompanyNote] = field(default_factory=list)
    activities: list[CompanyActivity] = field(default_factory=list)

    @property
    def primary_contact(self) -> CompanyContact | None:
        for contact in self.contacts:
            if contact.is_primary_contact:
                return contact
        return None


@dataclass(frozen=True)
class CreatedCompany:
    company: Company
    contact: CompanyContact


@dataclass(frozen=True)
class DashboardStats:
    lead_count: int
    prospect_count: int
    client_count: int
    inactive_count: int
    total_pipeline_value: float


READONLY_FIELDS = ("created_date", "updated_date")
COMPANY_FIELDS = tuple(f.name for f in fields(Company))
COMPANY_INPUT_FIELDS = tuple(
    name for name in COMPANY_FIELDS if name not in ("company_id", *READONLY_FIELDS)
)
CONTACT_FIELDS = tuple(f.name for f in fields(CompanyContact))
CONTACT_INPUT_FIELDS = tuple(
    name for name in CONTACT_FIELDS if name not in ("contact_id", *READONLY_FIELDS)
)
CONTACT_FLAGS = ("is_primary_contact", "is_decision_maker", "is_active_contact")


def _known(cls: type, row: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {key: value for key, value in row.items() if key in names}


def clean_fields(values: Mapping[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, date):
            value = value.isoformat()
        elif isinstance(value, str):
            value = value.strip()
            if value == "":
                value = None
        cleaned[key] = value
    return cleaned


def validate_company(values: Mapping[str, Any], *, partial: bool = False) -> dict[str, Any]:
    """Check company field shape and return the cleaned row.

    With ``partial`` set only the supplied fields are checked, which is how
    updates are validated; otherwise ``company_name`` is required and a
    missing status defaults to ``lead``.
    """
    if partial:
        rules.reject_readonly(values, ("company_id", *READONLY_FIELDS))
    rules.reject_unknown(values, COMPANY_INPUT_FIELDS, "company")
    row = clean_fields(values)

    if not partial or "company_name" in row:
        rules.require(row.get("company_name"), "company_name")
    if not partial and row.get("company_status") is None:
        row["company_status"] = CompanyStatus.LEAD.value
    if partial and "company_status" in row:
        rules.require(row["company_status"], "company_status")

    rules.validate_enum(row.get("company_status"), [s.value for s in CompanyStatus], "company_status")
    rules.validate_enum(row.get("lead_score"), [s.value for s in LeadScore], "lead_score")
    rules.validate_zip(row.get("zip_code"))
    rules.parse_date(row.get("expected_close_date"), "expected_close_date")
    rules.validate_non_negative_int(row.get("immediate_positions"), "immediate_positions")
    rules.validate_non_negative_int(row.get("annual_positions"), "annual_positions")
    rules.validate_non_negative_number(row.get("opportunity_value"), "opportunity_value")
    if row.get("company_website"):
        row["company_website"] = rules.normalize_website(row["company_website"])
    return row


def validate_contact(values: Mapping[str, Any], *, partial: bool = False) -> dict[str, Any]:
    if partial:
        rules.reject_readonly(values, ("contact_id", "company_id", *READONLY_FIELDS))
    rules.reject_unknown(values, CONTACT_INPUT_FIELDS, "contact")
    row = clean_fields(values)

    required = (
        "contact_first_name",
        "contact_last_name",
        "contact_email",
        "preferred_contact_method",
    )
    for name in required:
        if not partial or name in row:
            rules.require(row.get(name), name)

    rules.validate_email(row.get("contact_email"), "contact_email")
    rules.validate_enum(
        row.get("preferred_contact_method"),
        [m.value for m in ContactMethod],
        "preferred_contact_method",
    )
    for flag in CONTACT_FLAGS:
        rules.validate_bool(row.get(flag), flag)
    return row


def validate_activity_type(value: str | None) -> str:
    rules.require(value, "activity_type")
    rules.validate_enum(value, [t.value for t in ActivityType], "activity_type")
    return value
