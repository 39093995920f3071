import json
from dataclasses import replace
from pathlib import Path

import pytest

from staffcrm.domain.rules import ValidationError
from staffcrm.domain.stages import CompanyStatus
from staffcrm.services.companies import CompanyService, NotFoundError
from staffcrm.services.events import EventLogger
from staffcrm.services.related import RelatedRecordService
from staffcrm.services.utils import parse_timestamp
from staffcrm.store.base import PersistenceError
from staffcrm.store.sqlite import SqliteStore

JO = {
    "contact_first_name": "Jo",
    "contact_last_name": "Lee",
    "contact_email": "jo@acme.com",
    "preferred_contact_method": "email",
}


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(tmp_path / "test.sqlite")
    store.apply_schema()
    return store


def _create(service: CompanyService, name: str, **fields):
    return service.create_company({"company_name": name, **fields}, JO)


class ContactInsertFails:
    def __init__(self, store: SqliteStore) -> None:
        self.store = store

    def __getattr__(self, name):
        return getattr(self.store, name)

    def insert(self, table, row):
        if table == "company_contacts":
            raise PersistenceError("contact insert failed")
        return self.store.insert(table, row)


def test_create_company_with_primary_contact(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))

    created = service.create_company(
        {"company_name": "Acme Health", "company_status": "lead"},
        {**JO, "is_primary_contact": False},
    )

    assert created.company.company_id
    assert created.company.company_status == "lead"
    assert created.contact.company_id == created.company.company_id
    assert created.contact.is_primary_contact is True
    assert created.contact.is_decision_maker is True
    assert created.contact.is_active_contact is True
    detail = service.get_company_by_id(created.company.company_id)
    assert len(detail.contacts) == 1
    assert detail.primary_contact == created.contact


def test_create_company_defaults_to_lead_and_normalizes_website(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))

    created = _create(service, "Acme Health", company_website="www.acmehealth.com")

    assert created.company.company_status == "lead"
    assert created.company.company_website == "https://www.acmehealth.com"
    assert created.company.created_date
    assert created.company.updated_date == created.company.created_date


def test_create_company_validates_before_writing(tmp_path: Path) -> None:
    store = _store(tmp_path)
    service = CompanyService(store)

    with pytest.raises(ValidationError):
        service.create_company({"company_name": "Acme Health"}, {**JO, "contact_email": None})
    with pytest.raises(ValidationError):
        service.create_company({"company_name": ""}, JO)
    with pytest.raises(ValidationError):
        _create(service, "Acme Health", zip_code="1234")

    assert store.select("companies") == []


def test_failed_contact_insert_removes_company(tmp_path: Path) -> None:
    store = _store(tmp_path)
    service = CompanyService(ContactInsertFails(store))

    with pytest.raises(PersistenceError):
        _create(service, "Acme Health")

    assert store.select("companies") == []


def test_companies_by_status_filters_and_orders(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    first = _create(service, "First Lead")
    _create(service, "A Prospect", company_status="prospect")
    second = _create(service, "Second Lead")

    leads = service.get_companies_by_status("lead")

    assert [s.company.company_id for s in leads] == [
        second.company.company_id,
        first.company.company_id,
    ]
    assert all(s.company.company_status == "lead" for s in leads)
    assert all(len(s.contacts) == 1 for s in leads)
    assert service.get_companies_by_status(CompanyStatus.CLIENT) == []


def test_unknown_status_rejected(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    with pytest.raises(ValidationError):
        service.get_companies_by_status("archived")


def test_lead_to_prospect_scenario(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    created = service.create_company({"company_name": "Acme Health", "company_status": "lead"}, JO)
    company_id = created.company.company_id

    leads = service.get_companies_by_status("lead")
    assert [s.company.company_id for s in leads] == [company_id]
    assert [c.contact_email for c in leads[0].contacts] == ["jo@acme.com"]

    updated = service.update_company_status(company_id, "prospect")
    assert updated.company_status == "prospect"
    assert service.get_companies_by_status("lead") == []
    assert [s.company.company_id for s in service.get_companies_by_status("prospect")] == [company_id]


def test_status_changes_are_unrestricted(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    company_id = _create(service, "Acme Health", company_status="client").company.company_id

    assert service.update_company_status(company_id, CompanyStatus.INACTIVE).company_status == "inactive"
    assert service.update_company_status(company_id, "lead").company_status == "lead"


def test_update_company_round_trip(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    company_id = _create(service, "Acme Health", industry="Retail", city="Denver").company.company_id
    before = service.get_company_by_id(company_id).company

    service.update_company(company_id, {"industry": "Healthcare"})
    after = service.get_company_by_id(company_id).company

    assert after.industry == "Healthcare"
    assert replace(after, industry=before.industry, updated_date=before.updated_date) == before
    assert parse_timestamp(after.updated_date) > parse_timestamp(before.updated_date)


def test_update_company_rejects_bad_input(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    company_id = _create(service, "Acme Health").company.company_id

    with pytest.raises(ValidationError):
        service.update_company(company_id, {})
    with pytest.raises(ValidationError):
        service.update_company(company_id, {"company_id": "other"})
    with pytest.raises(ValidationError):
        service.update_company(company_id, {"zip_code": "ABCDE"})
    with pytest.raises(NotFoundError):
        service.update_company("missing", {"industry": "Healthcare"})
    with pytest.raises(NotFoundError):
        service.update_company_status("missing", "client")


def test_get_company_by_id_includes_related_records(tmp_path: Path) -> None:
    store = _store(tmp_path)
    service = CompanyService(store)
    related = RelatedRecordService(store)
    company_id = _create(service, "Acme Health").company.company_id
    related.add_note(company_id, "First call went well")
    related.add_note(company_id, "Sent pricing")
    related.add_activity(company_id, "Completed Call", "Discussed Q3 hiring")

    detail = service.get_company_by_id(company_id)

    assert detail.company.company_name == "Acme Health"
    assert [n.note_text for n in detail.notes] == ["Sent pricing", "First call went well"]
    assert [a.activity_type for a in detail.activities] == ["Completed Call"]
    assert len(detail.contacts) == 1


def test_get_company_by_id_missing(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    with pytest.raises(NotFoundError):
        service.get_company_by_id("missing")


def test_delete_company_cascades(tmp_path: Path) -> None:
    store = _store(tmp_path)
    service = CompanyService(store)
    related = RelatedRecordService(store)
    company_id = _create(service, "Acme Health").company.company_id
    keep_id = _create(service, "Other Co").company.company_id
    related.add_note(company_id, "note")
    related.add_activity(company_id, "Sent Email", "intro")

    deleted = service.delete_company(company_id)

    assert deleted.company_id == company_id
    with pytest.raises(NotFoundError):
        service.get_company_by_id(company_id)
    for table in ("company_contacts", "company_notes", "company_activities"):
        assert store.select(table, eq={"company_id": company_id}) == []
    assert service.get_company_by_id(keep_id).contacts
    with pytest.raises(NotFoundError):
        service.delete_company(company_id)


def test_search_companies(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    acme = _create(service, "Acme Health", industry="Healthcare")
    globex = _create(service, "Globex", industry="Health Services")
    _create(service, "Initech", industry="Software")

    by_name = service.search_companies("ACME")
    by_industry = service.search_companies("health")

    assert [s.company.company_id for s in by_name] == [acme.company.company_id]
    assert [s.company.company_id for s in by_industry] == [
        globex.company.company_id,
        acme.company.company_id,
    ]
    assert service.search_companies("100%") == []
    with pytest.raises(ValidationError):
        service.search_companies("  ")


def test_search_companies_folds_accented_text(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    ecole = _create(service, "ÉCOLE Médicale", industry="Éducation")
    _create(service, "Ecole Primaire", industry="Schools")

    by_name = service.search_companies("école")
    by_industry = service.search_companies("ÉDUCATION")

    assert [s.company.company_id for s in by_name] == [ecole.company.company_id]
    assert [s.company.company_id for s in by_industry] == [ecole.company.company_id]


def test_search_companies_treats_wildcards_literally(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    literal = _create(service, "A_B Staffing")
    _create(service, "AXB Staffing")

    assert [s.company.company_id for s in service.search_companies("a_b")] == [
        literal.company.company_id
    ]


def test_dashboard_stats(tmp_path: Path) -> None:
    service = CompanyService(_store(tmp_path))
    _create(service, "Lead One", opportunity_value=1000)
    _create(service, "Lead Two")
    _create(service, "Prospect", company_status="prospect", opportunity_value=2500.5)
    _create(service, "Client", company_status="client", opportunity_value=0)

    stats = service.get_dashboard_stats()
    assert stats.lead_count == 2
    assert stats.prospect_count == 1
    assert stats.client_count == 1
    assert stats.inactive_count == 0
    assert stats.total_pipeline_value == pytest.approx(3500.5)

    _create(service, "Big Deal", opportunity_value=5000)
    assert service.get_dashboard_stats().total_pipeline_value == pytest.approx(8500.5)
    assert service.status_counts()[CompanyStatus.LEAD] == 3


def test_events_record_field_names_only(tmp_path: Path) -> None:
    events_path = tmp_path / "events.ndjson"
    service = CompanyService(
        _store(tmp_path), events=EventLogger(path=events_path, workspace="test")
    )
    company_id = _create(service, "Acme Health").company.company_id
    service.update_company(company_id, {"industry": "Healthcare"})

    lines = [json.loads(line) for line in events_path.read_text().splitlines()]
    assert [line["event_type"] for line in lines] == [
        "company_created",
        "contact_added",
        "company_updated",
    ]
    assert lines[2]["changed_fields"] == ["industry"]
    assert "Healthcare" not in events_path.read_text()
