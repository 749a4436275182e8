from __future__ import annotations

import enum
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable

from hourlog.catalog import Activity, CatalogStore, Project, TimeEntry, parse_time_entry
from hourlog.liststore import BaseListGateway


log = logging.getLogger("hourlog.entries")

HOURS_STEP = 0.25
MAX_HOURS = 24.0
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ERROR_MESSAGES = {
    "client_required": "Please select a client",
    "project_required": "Please select a project",
    "date_required": "Please select a date",
    "activity_required": "Please select an activity",
    "hours_invalid": "Hours must be between 0.25 and 24 in 0.25 increments",
    "date_invalid": "Please enter a valid date",
    "client_not_assigned": "You do not have access to this client",
    "project_not_found": "The selected project does not belong to this client",
    "activity_not_found": "The selected activity does not belong to this project",
    "entry_not_found": "Time entry not found",
}


def validate_hours(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        hours = float(str(value).strip())
    except (TypeError, ValueError):
        return False
    if not math.isfinite(hours) or hours <= 0 or hours > MAX_HOURS:
        return False
    return (hours / HOURS_STEP).is_integer()


def validate_required(value: Any) -> bool:
    return bool(str(value if value is not None else "").strip())


def validate_email(value: Any) -> bool:
    return bool(EMAIL_RE.match(str(value or "").strip()))


class FormState(enum.Enum):
    EMPTY = "empty"
    CLIENT_CHOSEN = "client_chosen"
    PROJECT_CHOSEN = "project_chosen"
    ACTIVITY_CHOSEN = "activity_chosen"
    SUBMITTABLE = "submittable"


@dataclass
class EntryForm:
    """Entry form with dependent option lists.

    Choosing a client replaces the project options and clears everything
    below it; choosing a project does the same for activities.
    """

    client_code: str = ""
    project_name: str = ""
    activity_task: str = ""
    date: str = ""
    hours: str = ""
    notes: str = ""
    project_options: list[Project] = field(default_factory=list)
    activity_options: list[Activity] = field(default_factory=list)

    def choose_client(self, catalog: CatalogStore, client_code: str) -> None:
        self.client_code = str(client_code or "").strip()
        self.project_name = ""
        self.activity_task = ""
        self.activity_options = []
        self.project_options = catalog.projects_for_client(self.client_code) if self.client_code else []

    def choose_project(self, catalog: CatalogStore, project_name: str) -> None:
        self.project_name = str(project_name or "").strip()
        self.activity_task = ""
        self.activity_options = catalog.activities_for_project(self.project_name) if self.project_name else []

    def choose_activity(self, activity_task: str) -> None:
        self.activity_task = str(activity_task or "").strip()

    @property
    def state(self) -> FormState:
        if not self.client_code:
            return FormState.EMPTY
        if not self.project_name:
            return FormState.CLIENT_CHOSEN
        if not self.activity_task:
            return FormState.PROJECT_CHOSEN
        if self.error_code() is None:
            return FormState.SUBMITTABLE
        return FormState.ACTIVITY_CHOSEN

    def error_code(self) -> str | None:
        if not validate_required(self.client_code):
            return "client_required"
        if not validate_required(self.project_name):
            return "project_required"
        if not validate_required(self.date):
            return "date_required"
        if not validate_required(self.activity_task):
            return "activity_required"
        if not validate_hours(self.hours):
            return "hours_invalid"
        return None

    def entry_date(self) -> date:
        try:
            return date.fromisoformat(self.date.strip())
        except ValueError as e:
            raise ValueError("date_invalid") from e

    def to_fields(self, user_email: str) -> dict[str, Any]:
        return {
            "Title": user_email,
            "Date": self.entry_date().isoformat(),
            "ClientCode": self.client_code,
            "ProjectName": self.project_name,
            "ActivityTask": self.activity_task,
            "Hours": float(self.hours),
            "Notes": self.notes.strip(),
        }

    def query_params(self) -> dict[str, str]:
        return {
            "client": self.client_code,
            "project": self.project_name,
            "activity": self.activity_task,
            "date": self.date,
            "hours": self.hours,
            "notes": self.notes,
        }


def build_form(
    catalog: CatalogStore,
    *,
    client_code: str = "",
    project_name: str = "",
    activity_task: str = "",
    entry_date: str = "",
    hours: str = "",
    notes: str = "",
) -> EntryForm:
    """Replay the selections in order so each stage sees the options of the previous one."""
    form = EntryForm()
    form.choose_client(catalog, client_code)
    if form.client_code:
        form.choose_project(catalog, project_name)
    if form.project_name:
        form.choose_activity(activity_task)
    form.date = str(entry_date or "").strip()
    form.hours = str(hours if hours is not None else "").strip()
    form.notes = str(notes or "")
    return form


def _fmt_hours_value(hours: float) -> str:
    return f"{hours:g}"


@dataclass(frozen=True)
class DayGroup:
    date: date
    entries: tuple[TimeEntry, ...]

    @property
    def total_hours(self) -> float:
        return sum(e.hours for e in self.entries)


def group_by_date(entries: Iterable[TimeEntry]) -> list[DayGroup]:
    by_day: dict[date, list[TimeEntry]] = {}
    for entry in entries:
        by_day.setdefault(entry.date, []).append(entry)
    return [DayGroup(date=d, entries=tuple(by_day[d])) for d in sorted(by_day, reverse=True)]


def week_start(today: date) -> date:
    # Weeks start on Sunday.
    return today - timedelta(days=(today.weekday() + 1) % 7)


def week_total(entries: Iterable[TimeEntry], today: date) -> float:
    start = week_start(today)
    return sum(e.hours for e in entries if e.date >= start)


class TimeEntryRecorder:
    def __init__(self, gateway: BaseListGateway, catalog: CatalogStore) -> None:
        self._gw = gateway
        self._catalog = catalog

    def form(self, **values: str) -> EntryForm:
        return build_form(self._catalog, **values)

    def form_for_entry(self, entry: TimeEntry) -> EntryForm:
        return build_form(
            self._catalog,
            client_code=entry.client_code,
            project_name=entry.project_name,
            activity_task=entry.activity_task,
            entry_date=entry.date.isoformat(),
            hours=_fmt_hours_value(entry.hours),
            notes=entry.notes,
        )

    def _check(self, user_email: str, form: EntryForm) -> None:
        code = form.error_code()
        if code is not None:
            raise ValueError(code)
        form.entry_date()
        if form.client_code not in {c.code for c in self._catalog.clients_for_user(user_email)}:
            raise ValueError("client_not_assigned")
        if form.project_name not in {p.name for p in form.project_options}:
            raise ValueError("project_not_found")
        if form.activity_task not in {a.name for a in form.activity_options}:
            raise ValueError("activity_not_found")

    def list_entries(self, user_email: str) -> list[TimeEntry]:
        return self._catalog.load_time_entries(user_email)

    def get_entry(self, user_email: str, entry_id: str) -> TimeEntry | None:
        for entry in self.list_entries(user_email):
            if entry.id == str(entry_id):
                return entry
        return None

    def create_entry(self, user_email: str, form: EntryForm) -> TimeEntry:
        self._check(user_email, form)
        item = self._gw.create_item(self._catalog.lists.time_entries, form.to_fields(user_email))
        log.info("Time entry %s created by %s", item["id"], user_email)
        return parse_time_entry(item)

    def update_entry(self, user_email: str, entry_id: str, form: EntryForm) -> TimeEntry:
        self._check(user_email, form)
        if self.get_entry(user_email, entry_id) is None:
            raise ValueError("entry_not_found")
        fields = form.to_fields(user_email)
        fields.pop("Title")
        item = self._gw.update_item(self._catalog.lists.time_entries, str(entry_id), fields)
        log.info("Time entry %s updated by %s", entry_id, user_email)
        return parse_time_entry({"id": item["id"], "fields": {"Title": user_email, **item["fields"]}})

    def delete_entry(self, user_email: str, entry_id: str) -> None:
        if self.get_entry(user_email, entry_id) is None:
            raise ValueError("entry_not_found")
        self._gw.delete_item(self._catalog.lists.time_entries, str(entry_id))
        log.info("Time entry %s deleted by %s", entry_id, user_email)

    def copy_form(self, user_email: str, entry_id: str, today: date) -> EntryForm:
        """Prefill a new entry from an existing one, dated today.

        Client, project and activity are chosen one after another; each
        choice only sees the options the previous one populated.
        """
        entry = self.get_entry(user_email, entry_id)
        if entry is None:
            raise ValueError("entry_not_found")

        form = EntryForm()
        form.choose_client(self._catalog, entry.client_code)
        if entry.project_name in {p.name for p in form.project_options}:
            form.choose_project(self._catalog, entry.project_name)
        if entry.activity_task in {a.name for a in form.activity_options}:
            form.choose_activity(entry.activity_task)
        form.date = today.isoformat()
        form.hours = _fmt_hours_value(entry.hours)
        form.notes = entry.notes
        return form
