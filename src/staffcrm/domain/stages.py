from __future__ import annotations

from enum import Enum


class CompanyStatus(str, Enum):
    LEAD = "lead"
    PROSPECT = "prospect"
    CLIENT = "client"
    INACTIVE = "inactive"


class LeadScore(str, Enum):
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class ContactMethod(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    MOBILE = "mobile"


class ActivityType(str, Enum):
    ATTEMPTED_CALL = "Attempted Call"
    COMPLETED_CALL = "Completed Call"
    SENT_SMS = "Sent SMS"
    SENT_EMAIL = "Sent Email"
    INBOUND_CONTACT = "Inbound Contact"
    NOTE = "Note"
