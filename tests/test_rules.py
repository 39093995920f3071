import pytest

from staffcrm.domain import models, rules
from staffcrm.domain.rules import ValidationError
from staffcrm.domain.stages import CompanyStatus


@pytest.mark.parametrize("zip_code", ["12345", "12345-6789"])
def test_zip_accepted(zip_code: str) -> None:
    rules.validate_zip(zip_code)


@pytest.mark.parametrize("zip_code", ["1234", "ABCDE", "12345-67", "123456"])
def test_zip_rejected(zip_code: str) -> None:
    with pytest.raises(ValidationError):
        rules.validate_zip(zip_code)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("https://acme.com", "https://acme.com"),
        ("www.acme.com", "https://www.acme.com"),
        ("acme.com", "https://acme.com"),
        ("acme health", "acme health"),
    ],
)
def test_normalize_website(raw: str, expected: str) -> None:
    assert rules.normalize_website(raw) == expected


def test_validate_company_defaults_status_to_lead() -> None:
    row = models.validate_company({"company_name": "Acme Health"})
    assert row["company_status"] == "lead"


def test_validate_company_accepts_enum_members() -> None:
    row = models.validate_company(
        {"company_name": "Acme Health", "company_status": CompanyStatus.CLIENT}
    )
    assert row["company_status"] == "client"


def test_validate_company_requires_name() -> None:
    with pytest.raises(ValidationError):
        models.validate_company({"company_name": "  ", "industry": "Healthcare"})


@pytest.mark.parametrize(
    "fields",
    [
        {"company_status": "archived"},
        {"lead_score": "lukewarm"},
        {"zip_code": "ABCDE"},
        {"immediate_positions": -1},
        {"annual_positions": 2.5},
        {"opportunity_value": -100},
        {"opportunity_value": float("nan")},
        {"opportunity_value": float("inf")},
        {"expected_close_date": "next week"},
        {"favourite_colour": "blue"},
    ],
)
def test_validate_company_rejects_bad_fields(fields: dict) -> None:
    with pytest.raises(ValidationError):
        models.validate_company({"company_name": "Acme", **fields})


def test_partial_update_rejects_readonly_fields() -> None:
    with pytest.raises(ValidationError):
        models.validate_company({"created_date": "2026-01-01T00:00:00+00:00"}, partial=True)


def test_partial_update_only_checks_given_fields() -> None:
    row = models.validate_company({"industry": "Healthcare"}, partial=True)
    assert row == {"industry": "Healthcare"}


def test_validate_contact_requires_fields() -> None:
    with pytest.raises(ValidationError):
        models.validate_contact(
            {"contact_first_name": "Jo", "contact_last_name": "Lee", "preferred_contact_method": "email"}
        )


def test_validate_contact_rejects_bad_email_and_method() -> None:
    base = {
        "contact_first_name": "Jo",
        "contact_last_name": "Lee",
        "contact_email": "jo@acme.com",
        "preferred_contact_method": "email",
    }
    models.validate_contact(base)
    with pytest.raises(ValidationError):
        models.validate_contact({**base, "contact_email": "not-an-email"})
    with pytest.raises(ValidationError):
        models.validate_contact({**base, "preferred_contact_method": "fax"})
