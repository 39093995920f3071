from staffcrm.domain.models import (
    Company,
    CompanyActivity,
    CompanyContact,
    CompanyDetail,
    CompanyNote,
    CompanySummary,
    CreatedCompany,
    DashboardStats,
)
from staffcrm.domain.rules import ValidationError

__all__ = [
    "Company",
    "CompanyActivity",
    "CompanyContact",
    "CompanyDetail",
    "CompanyNote",
    "CompanySummary",
    "CreatedCompany",
    "DashboardStats",
    "ValidationError",
]
