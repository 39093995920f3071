from datetime import date
from pathlib import Path

import pytest

from staffcrm.domain.rules import ValidationError
from staffcrm.domain.stages import ActivityType
from staffcrm.services.companies import CompanyService, NotFoundError
from staffcrm.services.related import RelatedRecordService
from staffcrm.services.utils import parse_timestamp
from staffcrm.store.sqlite import SqliteStore


def _setup(tmp_path: Path, user_name: str = "User") -> tuple[RelatedRecordService, str]:
    store = SqliteStore(tmp_path / "test.sqlite")
    store.apply_schema()
    created = CompanyService(store).create_company(
        {"company_name": "Acme Health"},
        {
            "contact_first_name": "Jo",
            "contact_last_name": "Lee",
            "contact_email": "jo@acme.com",
            "preferred_contact_method": "email",
        },
    )
    return RelatedRecordService(store, user_name=user_name), created.company.company_id


def _contact(company_id: str, **fields) -> dict:
    return {
        "company_id": company_id,
        "contact_first_name": "Sam",
        "contact_last_name": "Park",
        "contact_email": "sam@acme.com",
        "preferred_contact_method": "phone",
        **fields,
    }


def test_notes_newest_first_with_attribution(tmp_path: Path) -> None:
    related, company_id = _setup(tmp_path, user_name="Dana")
    related.add_note(company_id, "Initial outreach")
    related.add_note(company_id, "Follow up booked", author_name="Riley")

    notes = related.get_notes(company_id)

    assert [n.note_text for n in notes] == ["Follow up booked", "Initial outreach"]
    assert [n.created_by_name for n in notes] == ["Riley", "Dana"]
    assert all(n.created_date for n in notes)


def test_add_note_requires_text(tmp_path: Path) -> None:
    related, company_id = _setup(tmp_path)
    with pytest.raises(ValidationError):
        related.add_note(company_id, "   ")


def test_activities_newest_first(tmp_path: Path) -> None:
    related, company_id = _setup(tmp_path)
    first = related.add_activity(company_id, ActivityType.ATTEMPTED_CALL, "No answer")
    second = related.add_activity(
        company_id, "Sent Email", "Sent capabilities deck", follow_up_date=date(2026, 11, 2)
    )

    activities = related.get_activities(company_id)

    assert [a.activity_id for a in activities] == [second.activity_id, first.activity_id]
    assert activities[0].follow_up_date == "2026-11-02"
    assert activities[1].created_by_name == "User"
    assert parse_timestamp(second.created_date) > parse_timestamp(first.created_date)


def test_add_activity_validates_type_and_date(tmp_path: Path) -> None:
    related, company_id = _setup(tmp_path)
    with pytest.raises(ValidationError):
        related.add_activity(company_id, "Carrier Pigeon", "coo")
    with pytest.raises(ValidationError):
        related.add_activity(company_id, "Note", "text", follow_up_date="tomorrow")
    with pytest.raises(ValidationError):
        related.add_activity(company_id, "Note", "")


def test_missing_company_is_not_found(tmp_path: Path) -> None:
    related, _ = _setup(tmp_path)

    with pytest.raises(NotFoundError):
        related.add_note("missing", "hello")
    with pytest.raises(NotFoundError):
        related.add_activity("missing", "Note", "hello")
    with pytest.raises(NotFoundError):
        related.add_contact(_contact("missing"))
    with pytest.raises(NotFoundError):
        related.get_notes("missing")
    with pytest.raises(NotFoundError):
        related.get_activities("missing")
    with pytest.raises(NotFoundError):
        related.update_contact("missing", {"contact_phone": "555-0100"})


def test_add_contact_defaults_and_ordering(tmp_path: Path) -> None:
    related, company_id = _setup(tmp_path)

    added = related.add_contact(_contact(company_id, is_decision_maker=True))
    contacts = related.get_contacts(company_id)

    assert added.is_primary_contact is False
    assert added.is_decision_maker is True
    assert added.is_active_contact is True
    assert [c.contact_first_name for c in contacts] == ["Jo", "Sam"]


def test_second_primary_contact_rejected(tmp_path: Path) -> None:
    related, company_id = _setup(tmp_path)

    with pytest.raises(ValidationError):
        related.add_contact(_contact(company_id, is_primary_contact=True))

    added = related.add_contact(_contact(company_id))
    with pytest.raises(ValidationError):
        related.update_contact(added.contact_id, {"is_primary_contact": True})


def test_update_contact_merges_fields(tmp_path: Path) -> None:
    related, company_id = _setup(tmp_path)
    added = related.add_contact(_contact(company_id, contact_job_title="Recruiter"))

    updated = related.update_contact(
        added.contact_id, {"contact_mobile": "555-0101", "is_active_contact": False}
    )

    assert updated.contact_mobile == "555-0101"
    assert updated.is_active_contact is False
    assert updated.contact_job_title == "Recruiter"
    assert parse_timestamp(updated.updated_date) > parse_timestamp(added.updated_date)


def test_update_contact_rejects_reparenting(tmp_path: Path) -> None:
    related, company_id = _setup(tmp_path)
    added = related.add_contact(_contact(company_id))

    with pytest.raises(ValidationError):
        related.update_contact(added.contact_id, {"company_id": "other"})
    with pytest.raises(ValidationError):
        related.update_contact(added.contact_id, {})
