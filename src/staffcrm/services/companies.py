from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC
from typing import Any

from staffcrm.domain import models, rules
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
from staffcrm.domain.stages import CompanyStatus
from staffcrm.services.events import EventLogger
from staffcrm.services.utils import advance_timestamp, parse_timestamp
from staffcrm.store.base import PersistenceError, Row, TableStore

logger = logging.getLogger(__name__)

COMPANIES = "companies"
CONTACTS = "company_contacts"
NOTES = "company_notes"
ACTIVITIES = "company_activities"
# Children before parent so foreign keys hold at every step.
CASCADE_ORDER = (ACTIVITIES, NOTES, CONTACTS)
INVALID_KEY = "22P02"


class NotFoundError(LookupError):
    pass


@contextmanager
def logged_failure(action: str) -> Iterator[None]:
    try:
        yield
    except PersistenceError:
        logger.exception("Error %s", action)
        raise


def is_invalid_key(exc: PersistenceError) -> bool:
    return exc.code == INVALID_KEY


def newest_first(rows: list[Any]) -> list[Any]:
    return sorted(rows, key=lambda record: _sort_stamp(record.created_date), reverse=True)


def primary_first(contacts: list[CompanyContact]) -> list[CompanyContact]:
    return sorted(
        contacts,
        key=lambda contact: (not contact.is_primary_contact, _sort_stamp(contact.created_date)),
    )


class CompanyService:
    """Company lifecycle: create, read with related records, update, delete."""

    def __init__(self, store: TableStore, events: EventLogger | None = None) -> None:
        self.store = store
        self.events = events

    def create_company(
        self, company: Mapping[str, Any], primary_contact: Mapping[str, Any]
    ) -> CreatedCompany:
        """Insert a company together with its primary contact.

        Both records are validated before anything is written. If the contact
        insert fails the company row is deleted again, so a failed create
        leaves nothing behind.
        """
        company_row = models.validate_company(company)
        contact_input = {key: value for key, value in primary_contact.items() if key != "company_id"}
        contact_row = models.validate_contact({**contact_input, "is_primary_contact": True})
        for flag, default in (("is_decision_maker", True), ("is_active_contact", True)):
            if contact_row.get(flag) is None:
                contact_row[flag] = default

        with logged_failure(f"creating company {company_row['company_name']!r}"):
            created = self.store.insert(COMPANIES, company_row)
        company_id = created["company_id"]

        try:
            contact = self.store.insert(CONTACTS, {**contact_row, "company_id": company_id})
        except PersistenceError:
            logger.exception("Error creating primary contact for company %s", company_id)
            self._discard_company(company_id)
            raise

        logger.info("Created company %s (%s)", company_id, created.get("company_status"))
        self._log("company_created", "company", company_id, company_id, company_row)
        self._log("contact_added", "contact", contact["contact_id"], company_id, contact_row)
        return CreatedCompany(company=Company.from_row(created), contact=CompanyContact.from_row(contact))

    def get_companies_by_status(self, status: CompanyStatus | str) -> list[CompanySummary]:
        status_value = _status_value(status)
        with logged_failure(f"fetching {status_value} companies"):
            rows = self.store.select(
                COMPANIES,
                eq={"company_status": status_value},
                order_by="created_date",
                descending=True,
                embed=(CONTACTS,),
            )
        return [_summary(row) for row in rows]

    def get_company_by_id(self, company_id: str) -> CompanyDetail:
        with logged_failure(f"fetching company {company_id}"):
            row = self._company_row(company_id, embed=(CONTACTS, NOTES, ACTIVITIES))
        return CompanyDetail(
            company=Company.from_row(row),
            contacts=primary_first([CompanyContact.from_row(r) for r in row.get(CONTACTS) or []]),
            notes=newest_first([CompanyNote.from_row(r) for r in row.get(NOTES) or []]),
            activities=newest_first([CompanyActivity.from_row(r) for r in row.get(ACTIVITIES) or []]),
        )

    def update_company_status(self, company_id: str, status: CompanyStatus | str) -> Company:
        status_value = _status_value(status)
        return self._patch(company_id, {"company_status": status_value}, "company_status_changed")

    def update_company(self, company_id: str, fields: Mapping[str, Any]) -> Company:
        values = models.validate_company(fields, partial=True)
        if not values:
            raise rules.ValidationError("No company fields to update.")
        return self._patch(company_id, values, "company_updated")

    def delete_company(self, company_id: str) -> Company:
        with logged_failure(f"deleting company {company_id}"):
            self._company_row(company_id)
            for table in CASCADE_ORDER:
                self.store.delete(table, eq={"company_id": company_id})
            rows = self.store.delete(COMPANIES, eq={"company_id": company_id})
        if not rows:
            raise NotFoundError(f"Company not found: {company_id}")
        logger.info("Deleted company %s", company_id)
        self._log("company_deleted", "company", company_id, company_id)
        return Company.from_row(rows[0])

    def search_companies(self, term: str) -> list[CompanySummary]:
        rules.require(term, "search term")
        with logged_failure(f"searching companies for {term!r}"):
            rows = self.store.select(
                COMPANIES,
                ilike_any=(("company_name", "industry"), term.strip()),
                order_by="created_date",
                descending=True,
                embed=(CONTACTS,),
            )
        return [_summary(row) for row in rows]

    def status_counts(self) -> dict[CompanyStatus, int]:
        counts, _ = self._tally()
        return counts

    def get_dashboard_stats(self) -> DashboardStats:
        counts, total = self._tally()
        return DashboardStats(
            lead_count=counts[CompanyStatus.LEAD],
            prospect_count=counts[CompanyStatus.PROSPECT],
            client_count=counts[CompanyStatus.CLIENT],
            inactive_count=counts[CompanyStatus.INACTIVE],
            total_pipeline_value=total,
        )

    def _tally(self) -> tuple[dict[CompanyStatus, int], float]:
        with logged_failure("loading dashboard stats"):
            rows = self.store.select(COMPANIES, columns=("company_status", "opportunity_value"))
        counts = {status: 0 for status in CompanyStatus}
        total = 0.0
        for row in rows:
            try:
                counts[CompanyStatus(row.get("company_status"))] += 1
            except ValueError:
                logger.warning("Ignoring company with unknown status %r", row.get("company_status"))
            value = row.get("opportunity_value")
            if value is not None:
                total += float(value)
        return counts, total

    def _patch(self, company_id: str, values: dict[str, Any], event_type: str) -> Company:
        with logged_failure(f"updating company {company_id}"):
            current = self._company_row(company_id)
            values = {**values, "updated_date": advance_timestamp(current.get("updated_date"))}
            rows = self.store.update(COMPANIES, values, eq={"company_id": company_id})
        if not rows:
            raise NotFoundError(f"Company not found: {company_id}")
        self._log(event_type, "company", company_id, company_id, values)
        return Company.from_row(rows[0])

    def _company_row(self, company_id: str, embed: tuple[str, ...] = ()) -> Row:
        rules.require(company_id, "company_id")
        try:
            rows = self.store.select(COMPANIES, eq={"company_id": company_id}, embed=embed)
        except PersistenceError as exc:
            if is_invalid_key(exc):
                raise NotFoundError(f"Company not found: {company_id}") from exc
            raise
        if not rows:
            raise NotFoundError(f"Company not found: {company_id}")
        return rows[0]

    def _discard_company(self, company_id: str) -> None:
        try:
            self.store.delete(COMPANIES, eq={"company_id": company_id})
        except PersistenceError:
            logger.exception("Could not remove company %s after failed contact insert", company_id)

    def _log(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        company_id: str,
        fields: Mapping[str, Any] | None = None,
    ) -> None:
        if self.events is None:
            return
        self.events.log(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            company_id=company_id,
            changed_fields=[key for key in (fields or {}) if key != "updated_date"],
        )


def _status_value(status: CompanyStatus | str) -> str:
    value = status.value if isinstance(status, CompanyStatus) else status
    rules.require(value, "company_status")
    rules.validate_enum(value, [s.value for s in CompanyStatus], "company_status")
    return value


def _summary(row: Row) -> CompanySummary:
    contacts = [CompanyContact.from_row(r) for r in row.get(CONTACTS) or []]
    return CompanySummary(company=Company.from_row(row), contacts=primary_first(contacts))


def _sort_stamp(value: str | None) -> str:
    parsed = parse_timestamp(value)
    return parsed.astimezone(UTC).isoformat(timespec="microseconds") if parsed else ""
