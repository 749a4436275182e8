from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from hourlog.config import ListNames
from hourlog.liststore import BaseListGateway


log = logging.getLogger("hourlog.catalog")

TEAM_ONSHORE = "Onshore"
TEAM_OFFSHORE = "Offshore"
TEAM_BOTH = "Both"
TEAMS = (TEAM_ONSHORE, TEAM_OFFSHORE)
HOLIDAY_TEAMS = (TEAM_ONSHORE, TEAM_OFFSHORE, TEAM_BOTH)

METHOD_THEORETICAL = "Theoretical Available Hours"
METHOD_ACTUAL = "Actual Hours Worked"
CALCULATION_METHODS = (METHOD_THEORETICAL, METHOD_ACTUAL)

DEFAULT_TARGET_UTILIZATION = 80.0
DEFAULT_STANDARD_HOURS_PER_WEEK = 40.0
DEFAULT_ALLOCATION_PERCENT = 100.0


def _as_text(value: Any) -> str:
    return str(value if value is not None else "").strip()


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    text = _as_text(value).lower()
    if not text:
        return default
    return text in {"1", "true", "yes", "on"}


def _as_float(value: Any, default: float) -> float:
    text = _as_text(value)
    if not text:
        return float(default)
    try:
        return float(text)
    except ValueError:
        return float(default)


def parse_date(raw: Any) -> date:
    text = _as_text(raw)
    if "T" in text:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


@dataclass(frozen=True)
class Client:
    id: str
    code: str
    name: str
    description: str

    def to_fields(self) -> dict[str, Any]:
        return {"Title": self.name, "ClientCode": self.code, "ClientDescription": self.description}


@dataclass(frozen=True)
class Project:
    id: str
    name: str
    description: str
    client_code: str
    billable: bool

    def to_fields(self) -> dict[str, Any]:
        return {
            "Title": self.name,
            "ProjectDescription": self.description,
            "ClientCode": self.client_code,
            "Billable": self.billable,
        }


@dataclass(frozen=True)
class Activity:
    id: str
    name: str
    description: str
    project_name: str
    billable: bool

    def to_fields(self) -> dict[str, Any]:
        return {
            "Title": self.name,
            "ActivityDescription": self.description,
            "ProjectName": self.project_name,
            "Billable": self.billable,
        }


@dataclass(frozen=True)
class Assignment:
    id: str
    user_email: str
    client_code: str
    team: str
    allocation_percent: float

    def to_fields(self) -> dict[str, Any]:
        return {
            "Title": self.user_email,
            "ClientCode": self.client_code,
            "Team": self.team,
            "AllocationPercent": self.allocation_percent,
        }


@dataclass(frozen=True)
class UtilizationRule:
    id: str
    client_code: str
    target_utilization: float = DEFAULT_TARGET_UTILIZATION
    count_only_billable: bool = True
    standard_hours_per_week: float = DEFAULT_STANDARD_HOURS_PER_WEEK
    holiday_calendar: str = TEAM_BOTH
    calculation_method: str = METHOD_THEORETICAL

    def to_fields(self) -> dict[str, Any]:
        return {
            "ClientCode": self.client_code,
            "TargetUtilizationPercent": self.target_utilization,
            "CountOnlyBillable": self.count_only_billable,
            "StandardHoursPerWeek": self.standard_hours_per_week,
            "HolidayCalendar": self.holiday_calendar,
            "UtilizationCalculationMethod": self.calculation_method,
        }


@dataclass(frozen=True)
class Holiday:
    id: str
    name: str
    date: date
    team: str

    def to_fields(self) -> dict[str, Any]:
        return {"Title": self.name, "HolidayDate": self.date.isoformat(), "Team": self.team}


@dataclass(frozen=True)
class TimeEntry:
    id: str
    user_email: str
    date: date
    client_code: str
    project_name: str
    activity_task: str
    hours: float
    notes: str

    def to_fields(self) -> dict[str, Any]:
        return {
            "Title": self.user_email,
            "Date": self.date.isoformat(),
            "ClientCode": self.client_code,
            "ProjectName": self.project_name,
            "ActivityTask": self.activity_task,
            "Hours": self.hours,
            "Notes": self.notes,
        }


def parse_client(item: dict[str, Any]) -> Client:
    f = item.get("fields") or {}
    return Client(
        id=str(item.get("id", "")),
        code=_as_text(f.get("ClientCode")),
        name=_as_text(f.get("Title")),
        description=_as_text(f.get("ClientDescription")),
    )


def parse_project(item: dict[str, Any]) -> Project:
    f = item.get("fields") or {}
    return Project(
        id=str(item.get("id", "")),
        name=_as_text(f.get("Title")),
        description=_as_text(f.get("ProjectDescription")),
        client_code=_as_text(f.get("ClientCode")),
        billable=_as_bool(f.get("Billable"), True),
    )


def parse_activity(item: dict[str, Any]) -> Activity:
    f = item.get("fields") or {}
    return Activity(
        id=str(item.get("id", "")),
        name=_as_text(f.get("Title")),
        description=_as_text(f.get("ActivityDescription")),
        project_name=_as_text(f.get("ProjectName")),
        billable=_as_bool(f.get("Billable"), True),
    )


def parse_assignment(item: dict[str, Any]) -> Assignment:
    f = item.get("fields") or {}
    team = _as_text(f.get("Team")) or TEAM_ONSHORE
    return Assignment(
        id=str(item.get("id", "")),
        user_email=_as_text(f.get("Title")),
        client_code=_as_text(f.get("ClientCode")),
        team=team,
        allocation_percent=_as_float(f.get("AllocationPercent"), DEFAULT_ALLOCATION_PERCENT),
    )


def parse_rule(item: dict[str, Any]) -> UtilizationRule:
    f = item.get("fields") or {}
    return UtilizationRule(
        id=str(item.get("id", "")),
        client_code=_as_text(f.get("ClientCode")),
        target_utilization=_as_float(f.get("TargetUtilizationPercent"), 0) or DEFAULT_TARGET_UTILIZATION,
        count_only_billable=_as_bool(f.get("CountOnlyBillable"), True),
        standard_hours_per_week=_as_float(f.get("StandardHoursPerWeek"), 0) or DEFAULT_STANDARD_HOURS_PER_WEEK,
        holiday_calendar=_as_text(f.get("HolidayCalendar")) or TEAM_BOTH,
        calculation_method=_as_text(f.get("UtilizationCalculationMethod")) or METHOD_THEORETICAL,
    )


def parse_holiday(item: dict[str, Any]) -> Holiday:
    f = item.get("fields") or {}
    return Holiday(
        id=str(item.get("id", "")),
        name=_as_text(f.get("Title")),
        date=parse_date(f.get("HolidayDate")),
        team=_as_text(f.get("Team")) or TEAM_BOTH,
    )


def parse_time_entry(item: dict[str, Any]) -> TimeEntry:
    f = item.get("fields") or {}
    return TimeEntry(
        id=str(item.get("id", "")),
        user_email=_as_text(f.get("Title")),
        date=parse_date(f.get("Date")),
        client_code=_as_text(f.get("ClientCode")),
        project_name=_as_text(f.get("ProjectName")),
        activity_task=_as_text(f.get("ActivityTask")),
        hours=_as_float(f.get("Hours"), 0.0),
        notes=_as_text(f.get("Notes")),
    )


def _parse_all(list_name: str, items: list[dict[str, Any]], parser: Callable[[dict[str, Any]], Any]) -> tuple[Any, ...]:
    out = []
    for item in items:
        try:
            out.append(parser(item))
        except ValueError:
            log.warning("Skipping malformed %s item %s", list_name, item.get("id"))
    return tuple(out)


@dataclass(frozen=True)
class CatalogSnapshot:
    clients: tuple[Client, ...] = ()
    projects: tuple[Project, ...] = ()
    activities: tuple[Activity, ...] = ()
    assignments: tuple[Assignment, ...] = ()
    rules: tuple[UtilizationRule, ...] = ()
    holidays: tuple[Holiday, ...] = ()


class CatalogStore:
    """Read-through cache of the reference collections.

    `load()` replaces the whole snapshot; there is no incremental update.
    """

    def __init__(self, gateway: BaseListGateway, lists: ListNames) -> None:
        self._gw = gateway
        self._lists = lists
        self._snapshot = CatalogSnapshot()

    @property
    def lists(self) -> ListNames:
        return self._lists

    @property
    def clients(self) -> tuple[Client, ...]:
        return self._snapshot.clients

    @property
    def projects(self) -> tuple[Project, ...]:
        return self._snapshot.projects

    @property
    def activities(self) -> tuple[Activity, ...]:
        return self._snapshot.activities

    @property
    def assignments(self) -> tuple[Assignment, ...]:
        return self._snapshot.assignments

    @property
    def rules(self) -> tuple[UtilizationRule, ...]:
        return self._snapshot.rules

    @property
    def holidays(self) -> tuple[Holiday, ...]:
        return self._snapshot.holidays

    def load(self) -> None:
        jobs: dict[str, tuple[str, Callable[[dict[str, Any]], Any]]] = {
            "clients": (self._lists.clients, parse_client),
            "projects": (self._lists.projects, parse_project),
            "activities": (self._lists.activities, parse_activity),
            "assignments": (self._lists.access, parse_assignment),
            "rules": (self._lists.rules, parse_rule),
            "holidays": (self._lists.holidays, parse_holiday),
        }
        with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="catalog") as pool:
            futures = {key: pool.submit(self._gw.list_items, list_name) for key, (list_name, _) in jobs.items()}
            raw = {key: future.result() for key, future in futures.items()}

        parsed = {key: _parse_all(list_name, raw[key], parser) for key, (list_name, parser) in jobs.items()}
        self._snapshot = CatalogSnapshot(**parsed)
        log.debug(
            "Catalog loaded: %d clients, %d projects, %d activities, %d assignments",
            len(self.clients),
            len(self.projects),
            len(self.activities),
            len(self.assignments),
        )

    def load_time_entries(self, user_email: str | None = None) -> list[TimeEntry]:
        items = self._gw.list_items(self._lists.time_entries)
        entries: list[TimeEntry] = list(_parse_all(self._lists.time_entries, items, parse_time_entry))
        if user_email is not None:
            lowered = user_email.strip().lower()
            entries = [e for e in entries if e.user_email.lower() == lowered]
        entries.sort(key=lambda e: e.date, reverse=True)
        return entries

    def client_by_code(self, code: str) -> Client | None:
        for client in self.clients:
            if client.code == code:
                return client
        return None

    def client_by_id(self, client_id: str) -> Client | None:
        for client in self.clients:
            if client.id == str(client_id):
                return client
        return None

    def projects_for_client(self, client_code: str) -> list[Project]:
        return [p for p in self.projects if p.client_code == client_code]

    def project_by_name(self, name: str) -> Project | None:
        for project in self.projects:
            if project.name == name:
                return project
        return None

    def activities_for_project(self, project_name: str) -> list[Activity]:
        return [a for a in self.activities if a.project_name == project_name]

    def find_activity(self, name: str, project_name: str) -> Activity | None:
        for activity in self.activities:
            if activity.name == name and activity.project_name == project_name:
                return activity
        return None

    def assignments_for_user(self, user_email: str) -> list[Assignment]:
        lowered = user_email.strip().lower()
        return [a for a in self.assignments if a.user_email.lower() == lowered]

    def assignments_for_client(self, client_code: str) -> list[Assignment]:
        return [a for a in self.assignments if a.client_code == client_code]

    def clients_for_user(self, user_email: str) -> list[Client]:
        codes = {a.client_code for a in self.assignments_for_user(user_email)}
        return [c for c in self.clients if c.code in codes]

    def rule_for_client(self, client_code: str) -> UtilizationRule | None:
        for rule in self.rules:
            if rule.client_code and rule.client_code == client_code:
                return rule
        return None
