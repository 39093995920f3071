from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

from staffcrm.config import DEFAULT_USER_NAME
from staffcrm.domain import models, rules
from staffcrm.domain.models import CompanyActivity, CompanyContact, CompanyNote
from staffcrm.domain.stages import ActivityType
from staffcrm.services.companies import (
    ACTIVITIES,
    COMPANIES,
    CONTACTS,
    NOTES,
    NotFoundError,
    is_invalid_key,
    logged_failure,
    newest_first,
    primary_first,
)
from staffcrm.services.events import EventLogger
from staffcrm.services.utils import advance_timestamp
from staffcrm.store.base import ForeignKeyViolation, PersistenceError, Row, TableStore

logger = logging.getLogger(__name__)


class RelatedRecordService:
    """Contacts, notes and activities owned by a company."""

    def __init__(
        self,
        store: TableStore,
        user_name: str = DEFAULT_USER_NAME,
        events: EventLogger | None = None,
    ) -> None:
        self.store = store
        self.user_name = user_name
        self.events = events

    def add_contact(self, contact: Mapping[str, Any]) -> CompanyContact:
        row = models.validate_contact(contact)
        rules.require(row.get("company_id"), "company_id")
        for flag, default in (
            ("is_primary_contact", False),
            ("is_decision_maker", False),
            ("is_active_contact", True),
        ):
            if row.get(flag) is None:
                row[flag] = default
        if row["is_primary_contact"]:
            self._ensure_no_primary(row["company_id"])

        created = self._insert(CONTACTS, row, row["company_id"])
        self._log("contact_added", "contact", created["contact_id"], row["company_id"], row)
        return CompanyContact.from_row(created)

    def update_contact(self, contact_id: str, fields: Mapping[str, Any]) -> CompanyContact:
        values = models.validate_contact(fields, partial=True)
        if not values:
            raise rules.ValidationError("No contact fields to update.")
        current = self._contact_row(contact_id)
        if values.get("is_primary_contact") and not current.get("is_primary_contact"):
            self._ensure_no_primary(current["company_id"])

        values["updated_date"] = advance_timestamp(current.get("updated_date"))
        with logged_failure(f"updating contact {contact_id}"):
            rows = self.store.update(CONTACTS, values, eq={"contact_id": contact_id})
        if not rows:
            raise NotFoundError(f"Contact not found: {contact_id}")
        self._log(
            "contact_updated",
            "contact",
            contact_id,
            current["company_id"],
            [key for key in values if key != "updated_date"],
        )
        return CompanyContact.from_row(rows[0])

    def get_contacts(self, company_id: str) -> list[CompanyContact]:
        rows = self._children(CONTACTS, company_id)
        return primary_first([CompanyContact.from_row(row) for row in rows])

    def add_note(self, company_id: str, text: str, author_name: str | None = None) -> CompanyNote:
        rules.require(company_id, "company_id")
        rules.require(text, "note_text")
        row = {
            "company_id": company_id,
            "note_text": text.strip(),
            "created_by_name": self._author(author_name),
        }
        created = self._insert(NOTES, row, company_id)
        self._log("note_added", "note", created["note_id"], company_id, row)
        return CompanyNote.from_row(created)

    def get_notes(self, company_id: str) -> list[CompanyNote]:
        rows = self._children(NOTES, company_id, newest=True)
        return newest_first([CompanyNote.from_row(row) for row in rows])

    def add_activity(
        self,
        company_id: str,
        activity_type: ActivityType | str,
        notes: str,
        author_name: str | None = None,
        follow_up_date: date | str | None = None,
    ) -> CompanyActivity:
        rules.require(company_id, "company_id")
        type_value = models.validate_activity_type(
            activity_type.value if isinstance(activity_type, ActivityType) else activity_type
        )
        rules.require(notes, "activity_notes")
        if isinstance(follow_up_date, date):
            follow_up_date = follow_up_date.isoformat()
        rules.parse_date(follow_up_date, "follow_up_date")
        row = {
            "company_id": company_id,
            "activity_type": type_value,
            "activity_notes": notes.strip(),
            "created_by_name": self._author(author_name),
            "follow_up_date": follow_up_date,
        }
        created = self._insert(ACTIVITIES, row, company_id)
        self._log("activity_added", "activity", created["activity_id"], company_id, row)
        return CompanyActivity.from_row(created)

    def get_activities(self, company_id: str) -> list[CompanyActivity]:
        rows = self._children(ACTIVITIES, company_id, newest=True)
        return newest_first([CompanyActivity.from_row(row) for row in rows])

    def _insert(self, table: str, row: Mapping[str, Any], company_id: str) -> Row:
        try:
            return self.store.insert(table, row)
        except ForeignKeyViolation as exc:
            logger.error("Company %s not found while writing %s", company_id, table)
            raise NotFoundError(f"Company not found: {company_id}") from exc
        except PersistenceError as exc:
            if is_invalid_key(exc):
                raise NotFoundError(f"Company not found: {company_id}") from exc
            logger.exception("Error writing %s for company %s", table, company_id)
            raise

    def _children(self, table: str, company_id: str, newest: bool = False) -> list[Row]:
        rules.require(company_id, "company_id")
        with logged_failure(f"fetching {table} for company {company_id}"):
            try:
                exists = self.store.select(
                    COMPANIES, eq={"company_id": company_id}, columns=("company_id",)
                )
            except PersistenceError as exc:
                if is_invalid_key(exc):
                    raise NotFoundError(f"Company not found: {company_id}") from exc
                raise
            if not exists:
                raise NotFoundError(f"Company not found: {company_id}")
            return self.store.select(
                table,
                eq={"company_id": company_id},
                order_by="created_date",
                descending=newest,
            )

    def _contact_row(self, contact_id: str) -> Row:
        rules.require(contact_id, "contact_id")
        with logged_failure(f"fetching contact {contact_id}"):
            try:
                rows = self.store.select(CONTACTS, eq={"contact_id": contact_id})
            except PersistenceError as exc:
                if is_invalid_key(exc):
                    raise NotFoundError(f"Contact not found: {contact_id}") from exc
                raise
        if not rows:
            raise NotFoundError(f"Contact not found: {contact_id}")
        return rows[0]

    def _ensure_no_primary(self, company_id: str) -> None:
        with logged_failure(f"checking primary contact for company {company_id}"):
            rows = self.store.select(
                CONTACTS,
                eq={"company_id": company_id, "is_primary_contact": True},
                columns=("contact_id",),
            )
        if rows:
            raise rules.ValidationError(f"Company {company_id} already has a primary contact.")

    def _author(self, author_name: str | None) -> str:
        if author_name is not None and author_name.strip():
            return author_name.strip()
        return self.user_name

    def _log(self, event_type: str, entity_type: str, entity_id: str, company_id: str, fields) -> None:
        if self.events is None:
            return
        self.events.log(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            company_id=company_id,
            changed_fields=list(fields),
        )
