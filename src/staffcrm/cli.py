from __future__ import annotations

import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any

import typer

from staffcrm import __version__
from staffcrm.config import (
    WorkspaceError,
    ensure_workspaces_dir,
    load_workspace,
    set_current_workspace,
    workspace_config_path,
    write_workspace_config,
)
from staffcrm.domain.models import CompanyActivity, CompanyContact, CompanyNote, CompanySummary
from staffcrm.domain.rules import ValidationError
from staffcrm.domain.stages import ActivityType, CompanyStatus, ContactMethod
from staffcrm.logging_config import setup_logging
from staffcrm.services import exports
from staffcrm.services.companies import CompanyService, NotFoundError
from staffcrm.services.events import EventLogger
from staffcrm.services.related import RelatedRecordService
from staffcrm.services.utils import format_currency, today_iso
from staffcrm.store import SqliteStore, open_store
from staffcrm.store.base import PersistenceError, TableStore

app = typer.Typer(help="Staffing sales pipeline CLI")
workspace_app = typer.Typer(help="Workspace management")
schema_app = typer.Typer(help="Schema operations")
company_app = typer.Typer(help="Company lifecycle")
contact_app = typer.Typer(help="Company contacts")
note_app = typer.Typer(help="Company notes")
activity_app = typer.Typer(help="Company activity log")
export_app = typer.Typer(help="Exports")

app.add_typer(workspace_app, name="workspace")
app.add_typer(schema_app, name="schema")
app.add_typer(company_app, name="company")
app.add_typer(contact_app, name="contact")
app.add_typer(note_app, name="note")
app.add_typer(activity_app, name="activity")
app.add_typer(export_app, name="export")

SERVICE_ERRORS = (ValidationError, NotFoundError, PersistenceError, WorkspaceError)
INT_FIELDS = {"immediate_positions", "annual_positions"}
FLOAT_FIELDS = {"opportunity_value"}
BOOL_FIELDS = {"is_primary_contact", "is_decision_maker", "is_active_contact"}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class Services:
    store: TableStore
    companies: CompanyService
    related: RelatedRecordService


@dataclass
class CliState:
    events: bool = True


state = CliState()


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit."
    ),
    log_level: str | None = typer.Option(
        None, "--log-level", help="DEBUG, INFO, WARNING or ERROR (default from STAFFCRM_LOG_LEVEL)."
    ),
    events: bool = typer.Option(
        True, "--events/--no-events", help="Write audit events to the workspace log."
    ),
) -> None:
    if log_level and log_level.upper() not in LOG_LEVELS:
        raise typer.BadParameter(f"--log-level must be one of: {', '.join(LOG_LEVELS)}")
    setup_logging(log_level)
    state.events = events


@app.command("init")
def init() -> None:
    """Initialize directories for workspaces and outputs."""
    ensure_workspaces_dir()
    Path("data").mkdir(exist_ok=True)
    Path("exports").mkdir(exist_ok=True)
    typer.echo("Initialized staffcrm directories.")


@workspace_app.command("add")
def workspace_add(
    name: str = typer.Argument(...),
    provider: str = typer.Option("sqlite", "--provider", help="sqlite or rest"),
    url: str | None = typer.Option(None, "--url", help="Backend URL for the rest provider."),
    user: str | None = typer.Option(None, "--user", help="Name recorded on notes and activities."),
    use: bool = typer.Option(True, "--use/--no-use", help="Set as current workspace."),
    force: bool = typer.Option(
        False, "--force", help="Overwrite existing workspace config if it exists."
    ),
) -> None:
    config_path = workspace_config_path(name)
    if config_path.exists() and not force:
        raise typer.BadParameter(
            f"Workspace already exists: {config_path}. Use --force to overwrite."
        )
    try:
        config_path = write_workspace_config(name, provider=provider, url=url, user_name=user)
    except WorkspaceError as exc:
        _exit_with_error(str(exc))
    if use:
        set_current_workspace(name)
    typer.echo(f"Workspace created: {config_path}")


@workspace_app.command("use")
def workspace_use(name: str = typer.Argument(...)) -> None:
    if not workspace_config_path(name).exists():
        raise typer.BadParameter(f"Workspace config not found: {workspace_config_path(name)}")
    set_current_workspace(name)
    typer.echo(f"Active workspace: {name}")


@schema_app.command("apply")
def schema_apply() -> None:
    """Create the local SQLite tables (sqlite workspaces only)."""
    ws = _load_workspace()
    if ws.backend.provider != "sqlite":
        _exit_with_error("schema apply only manages the local sqlite backend.")
    try:
        SqliteStore(ws.backend.sqlite_path).apply_schema()
    except PersistenceError as exc:
        _exit_with_error(str(exc))
    typer.echo("Applied schema to local SQLite.")


@company_app.command("add")
def company_add(
    name: str = typer.Option(..., "--name"),
    first: str = typer.Option(..., "--first", help="Primary contact first name."),
    last: str = typer.Option(..., "--last", help="Primary contact last name."),
    email: str = typer.Option(..., "--email", help="Primary contact email."),
    method: str = typer.Option(ContactMethod.EMAIL.value, "--method", help="email, phone or mobile"),
    title: str | None = typer.Option(None, "--title"),
    phone: str | None = typer.Option(None, "--phone"),
    mobile: str | None = typer.Option(None, "--mobile"),
    status: str = typer.Option(CompanyStatus.LEAD.value, "--status"),
    industry: str | None = typer.Option(None, "--industry"),
    size: str | None = typer.Option(None, "--size"),
    revenue: str | None = typer.Option(None, "--revenue"),
    website: str | None = typer.Option(None, "--website"),
    street_number: str | None = typer.Option(None, "--street-number"),
    street_name: str | None = typer.Option(None, "--street-name"),
    apt_suite: str | None = typer.Option(None, "--apt"),
    city: str | None = typer.Option(None, "--city"),
    us_state: str | None = typer.Option(None, "--state"),
    zip_code: str | None = typer.Option(None, "--zip"),
    source: str | None = typer.Option(None, "--source"),
    score: str | None = typer.Option(None, "--score", help="hot, warm or cold"),
    close: str | None = typer.Option(None, "--close", help="Expected close date YYYY-MM-DD."),
    needs: str | None = typer.Option(None, "--needs", help="Staffing needs overview."),
    immediate: int | None = typer.Option(None, "--immediate", help="Immediate positions."),
    annual: int | None = typer.Option(None, "--annual", help="Annual positions."),
    value: float | None = typer.Option(None, "--value", help="Opportunity value (USD)."),
    positions: str | None = typer.Option(None, "--positions", help="Position names."),
    position_type: str | None = typer.Option(None, "--position-type"),
    details: str | None = typer.Option(None, "--details", help="Additional staffing details."),
) -> None:
    company = {
        "company_name": name,
        "company_status": status,
        "industry": industry,
        "company_size": size,
        "annual_revenue": revenue,
        "company_website": website,
        "street_number": street_number,
        "street_name": street_name,
        "apt_suite": apt_suite,
        "city": city,
        "state": us_state,
        "zip_code": zip_code,
        "lead_source": source,
        "lead_score": score,
        "expected_close_date": close,
        "staffing_needs_overview": needs,
        "immediate_positions": immediate,
        "annual_positions": annual,
        "opportunity_value": value,
        "position_names": positions,
        "position_type": position_type,
        "additional_staffing_details": details,
    }
    contact = {
        "contact_first_name": first,
        "contact_last_name": last,
        "contact_email": email,
        "contact_job_title": title,
        "contact_phone": phone,
        "contact_mobile": mobile,
        "preferred_contact_method": method,
    }
    with _services() as services:
        try:
            created = services.companies.create_company(company, contact)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Created company: {created.company.company_id}")
    typer.echo(f"Primary contact: {created.contact.contact_id}")


@company_app.command("list")
def company_list(status: str = typer.Option(CompanyStatus.LEAD.value, "--status")) -> None:
    with _services() as services:
        try:
            summaries = services.companies.get_companies_by_status(status)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    if not summaries:
        typer.echo(f"No {status} companies.")
        return
    for summary in summaries:
        typer.echo(_summary_line(summary))


@company_app.command("search")
def company_search(term: str = typer.Argument(...)) -> None:
    with _services() as services:
        try:
            summaries = services.companies.search_companies(term)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    if not summaries:
        typer.echo("No matching companies.")
        return
    for summary in summaries:
        typer.echo(_summary_line(summary))


@company_app.command("show")
def company_show(company_id: str = typer.Argument(...)) -> None:
    with _services() as services:
        try:
            detail = services.companies.get_company_by_id(company_id)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    company = detail.company
    typer.echo(f"{company.company_name} [{company.company_status}]")
    for label, value in (
        ("id", company.company_id),
        ("industry", company.industry),
        ("website", company.company_website),
        ("city", company.city),
        ("state", company.state),
        ("zip", company.zip_code),
        ("score", company.lead_score),
        ("close", company.expected_close_date),
        ("value", format_currency(company.opportunity_value)),
        ("updated", company.updated_date),
    ):
        if value:
            typer.echo(f"  {label}: {value}")
    typer.echo("Contacts:")
    for contact in detail.contacts:
        typer.echo(f"  {_contact_line(contact)}")
    typer.echo("Notes:")
    for note in detail.notes:
        typer.echo(f"  {_note_line(note)}")
    typer.echo("Activities:")
    for activity in detail.activities:
        typer.echo(f"  {_activity_line(activity)}")


@company_app.command("status")
def company_status(
    company_id: str = typer.Argument(...),
    status: str = typer.Argument(..., help="lead, prospect, client or inactive"),
) -> None:
    with _services() as services:
        try:
            company = services.companies.update_company_status(company_id, status)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"{company.company_id} is now {company.company_status}")


@company_app.command("update")
def company_update(
    company_id: Annotated[str, typer.Argument()],
    assignments: Annotated[
        list[str],
        typer.Option("--set", help="field=value; repeat for several fields. Empty value clears."),
    ],
) -> None:
    with _services() as services:
        try:
            fields = _parse_assignments(assignments)
            company = services.companies.update_company(company_id, fields)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Updated company: {company.company_id}")


@company_app.command("delete")
def company_delete(
    company_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt."),
) -> None:
    if not yes:
        typer.confirm(
            f"Delete company {company_id} with all contacts, notes and activities?", abort=True
        )
    with _services() as services:
        try:
            company = services.companies.delete_company(company_id)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Deleted company: {company.company_name}")


@contact_app.command("add")
def contact_add(
    company_id: str = typer.Argument(...),
    first: str = typer.Option(..., "--first"),
    last: str = typer.Option(..., "--last"),
    email: str = typer.Option(..., "--email"),
    method: str = typer.Option(ContactMethod.EMAIL.value, "--method"),
    title: str | None = typer.Option(None, "--title"),
    phone: str | None = typer.Option(None, "--phone"),
    mobile: str | None = typer.Option(None, "--mobile"),
    primary: bool = typer.Option(False, "--primary/--no-primary"),
    decision_maker: bool = typer.Option(False, "--decision-maker/--no-decision-maker"),
    active: bool = typer.Option(True, "--active/--inactive"),
) -> None:
    with _services() as services:
        try:
            contact = services.related.add_contact(
                {
                    "company_id": company_id,
                    "contact_first_name": first,
                    "contact_last_name": last,
                    "contact_email": email,
                    "preferred_contact_method": method,
                    "contact_job_title": title,
                    "contact_phone": phone,
                    "contact_mobile": mobile,
                    "is_primary_contact": primary,
                    "is_decision_maker": decision_maker,
                    "is_active_contact": active,
                }
            )
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Added contact: {contact.contact_id}")


@contact_app.command("update")
def contact_update(
    contact_id: Annotated[str, typer.Argument()],
    assignments: Annotated[
        list[str],
        typer.Option("--set", help="field=value; repeat for several fields."),
    ],
) -> None:
    with _services() as services:
        try:
            fields = _parse_assignments(assignments)
            contact = services.related.update_contact(contact_id, fields)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Updated contact: {contact.contact_id}")


@contact_app.command("list")
def contact_list(company_id: str = typer.Argument(...)) -> None:
    with _services() as services:
        try:
            contacts = services.related.get_contacts(company_id)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    for contact in contacts:
        typer.echo(_contact_line(contact))


@note_app.command("add")
def note_add(
    company_id: str = typer.Argument(...),
    text: str = typer.Argument(...),
    author: str | None = typer.Option(None, "--author"),
) -> None:
    with _services() as services:
        try:
            note = services.related.add_note(company_id, text, author)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Added note: {note.note_id}")


@note_app.command("list")
def note_list(company_id: str = typer.Argument(...)) -> None:
    with _services() as services:
        try:
            notes = services.related.get_notes(company_id)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    if not notes:
        typer.echo("No notes.")
    for note in notes:
        typer.echo(_note_line(note))


@activity_app.command("add")
def activity_add(
    company_id: str = typer.Argument(...),
    activity_type: str = typer.Option(
        ..., "--type", help=", ".join(t.value for t in ActivityType)
    ),
    notes: str = typer.Option(..., "--notes"),
    follow_up: str | None = typer.Option(None, "--follow-up", help="YYYY-MM-DD"),
    author: str | None = typer.Option(None, "--author"),
) -> None:
    with _services() as services:
        try:
            activity = services.related.add_activity(
                company_id, activity_type, notes, author_name=author, follow_up_date=follow_up
            )
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Logged activity: {activity.activity_id}")


@activity_app.command("list")
def activity_list(company_id: str = typer.Argument(...)) -> None:
    with _services() as services:
        try:
            activities = services.related.get_activities(company_id)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    if not activities:
        typer.echo("No activities.")
    for activity in activities:
        typer.echo(_activity_line(activity))


@app.command("stats")
def stats() -> None:
    with _services() as services:
        try:
            result = services.companies.get_dashboard_stats()
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"leads: {result.lead_count}")
    typer.echo(f"prospects: {result.prospect_count}")
    typer.echo(f"clients: {result.client_count}")
    typer.echo(f"inactive: {result.inactive_count}")
    typer.echo(f"pipeline value: {format_currency(result.total_pipeline_value)}")


@export_app.command("excel")
def export_excel(out: str = typer.Option(..., "--out")) -> None:
    with _services() as services:
        try:
            exports.export_excel(services.store, Path(out))
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Exported Excel to {out}")


@app.command("snapshot")
def snapshot() -> None:
    ws = _load_workspace()
    snapshot_dir = Path("data") / "snapshots" / today_iso()
    snapshot_dir.mkdir(parents=True, exist_ok=True)
    sqlite_path = ws.backend.sqlite_path
    if sqlite_path is not None and sqlite_path.exists():
        shutil.copy2(sqlite_path, snapshot_dir / "local.sqlite")
    with _services() as services:
        try:
            exports.export_csv_tables(services.store, snapshot_dir)
        except SERVICE_ERRORS as exc:
            _exit_with_error(str(exc))
    typer.echo(f"Snapshot created at {snapshot_dir}")


@contextmanager
def _services():
    ws = _load_workspace()
    try:
        store = open_store(ws.backend)
    except WorkspaceError as exc:
        _exit_with_error(str(exc))
    events = EventLogger(path=ws.path / "events.ndjson", workspace=ws.name, enabled=state.events)
    try:
        yield Services(
            store=store,
            companies=CompanyService(store, events=events),
            related=RelatedRecordService(store, user_name=ws.user_name, events=events),
        )
    finally:
        store.close()


def _parse_assignments(assignments: list[str]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for assignment in assignments:
        name, sep, raw = assignment.partition("=")
        name = name.strip()
        if not sep or not name:
            raise ValidationError(f"Expected field=value, got {assignment!r}.")
        fields[name] = _coerce(name, raw.strip())
    return fields


def _coerce(name: str, raw: str) -> Any:
    if raw == "":
        return None
    try:
        if name in INT_FIELDS:
            return int(raw)
        if name in FLOAT_FIELDS:
            return float(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number.") from exc
    if name in BOOL_FIELDS:
        lowered = raw.lower()
        if lowered not in {"true", "false", "yes", "no", "1", "0"}:
            raise ValidationError(f"{name} must be true or false.")
        return lowered in {"true", "yes", "1"}
    return raw


def _summary_line(summary: CompanySummary) -> str:
    company = summary.company
    primary = summary.contacts[0].full_name if summary.contacts else "-"
    return (
        f"{company.company_id} | {company.company_name} | {company.company_status} | "
        f"{company.industry or '-'} | {primary} | {format_currency(company.opportunity_value)}"
    )


def _contact_line(contact: CompanyContact) -> str:
    flags = [
        label
        for label, enabled in (
            ("primary", contact.is_primary_contact),
            ("decision-maker", contact.is_decision_maker),
            ("inactive", not contact.is_active_contact),
        )
        if enabled
    ]
    return (
        f"{contact.contact_id} | {contact.full_name} | {contact.contact_email} | "
        f"{contact.preferred_contact_method} | {','.join(flags) or '-'}"
    )


def _note_line(note: CompanyNote) -> str:
    return f"{note.created_date} | {note.created_by_name} | {note.note_text}"


def _activity_line(activity: CompanyActivity) -> str:
    follow_up = f" | follow up {activity.follow_up_date}" if activity.follow_up_date else ""
    return (
        f"{activity.created_date} | {activity.activity_type} | {activity.created_by_name} | "
        f"{activity.activity_notes}{follow_up}"
    )


def _load_workspace():
    try:
        return load_workspace()
    except WorkspaceError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1) from exc


def _exit_with_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
