from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import holidays as holidays_lib

from hourlog.catalog import (
    CALCULATION_METHODS,
    HOLIDAY_TEAMS,
    TEAMS,
    Activity,
    Assignment,
    CatalogStore,
    Client,
    Holiday,
    Project,
    UtilizationRule,
    parse_date,
)
from hourlog.entries import validate_email, validate_required
from hourlog.liststore import BaseListGateway, StorageError


log = logging.getLogger("hourlog.admin")

ERROR_MESSAGES = {
    "client_code_required": "Client code is required",
    "client_name_required": "Client name is required",
    "client_description_required": "Client description is required",
    "client_code_exists": "A client with this code already exists",
    "client_not_found": "Client not found",
    "project_name_required": "Project name is required",
    "project_description_required": "Project description is required",
    "project_exists": "A project with this name already exists",
    "project_not_found": "Project not found",
    "activity_name_required": "Activity name is required",
    "activity_description_required": "Activity description is required",
    "activity_exists": "This activity already exists for the project",
    "activity_not_found": "Activity not found",
    "email_invalid": "Please enter a valid email address",
    "team_invalid": "Team must be Onshore or Offshore",
    "allocation_invalid": "Allocation must be a number between 0 and 100",
    "assignment_exists": "This user already has access to this client",
    "assignment_not_found": "Assignment not found",
    "target_invalid": "Target utilization must be a number between 0 and 100",
    "standard_hours_invalid": "Standard hours per week must be a number between 0 and 168",
    "calendar_invalid": "Holiday calendar must be Onshore, Offshore or Both",
    "method_invalid": "Unknown utilization calculation method",
    "rule_exists": "This client already has a utilization rule",
    "rule_not_found": "Utilization rule not found",
    "holiday_name_required": "Holiday name is required",
    "holiday_date_invalid": "Please enter a valid holiday date",
    "holiday_not_found": "Holiday not found",
    "country_unsupported": "Public holidays are not available for this country code",
    "year_invalid": "Please enter a valid year",
}


class DuplicateAssignmentError(ValueError):
    def __init__(self, user_email: str, client_code: str) -> None:
        super().__init__("assignment_exists")
        self.user_email = user_email
        self.client_code = client_code


@dataclass(frozen=True)
class DeleteStep:
    list_name: str
    item_id: str
    label: str


class CascadeDeleteError(StorageError):
    """A client delete stopped part-way.

    `completed` lists the steps already committed; rerunning the delete
    only has the remaining steps left to do.
    """

    def __init__(self, client_code: str, completed: list[DeleteStep], failed_step: DeleteStep, cause: Exception) -> None:
        self.client_code = client_code
        self.completed = list(completed)
        self.failed_step = failed_step
        self.cause = cause
        super().__init__(f"cascade_delete_failed: {failed_step.label}: {cause}")

    @property
    def partial(self) -> bool:
        return bool(self.completed)


@dataclass(frozen=True)
class ClientDeletePlan:
    client: Client
    projects: tuple[Project, ...]
    assignments: tuple[Assignment, ...]

    @property
    def confirmation_message(self) -> str:
        return (
            f'Are you sure you want to delete client "{self.client.name}"?\n\n'
            "This will also delete:\n"
            f"- {len(self.projects)} project(s)\n"
            f"- {len(self.assignments)} user access record(s)\n\n"
            "Time entries will be preserved."
        )


@dataclass
class CascadeResult:
    client_code: str
    completed: list[DeleteStep] = field(default_factory=list)

    @property
    def projects_deleted(self) -> int:
        return sum(1 for s in self.completed if s.label.startswith("project "))

    @property
    def assignments_deleted(self) -> int:
        return sum(1 for s in self.completed if s.label.startswith("access "))


def _number(raw: Any, code: str, *, low: float, high: float, allow_low: bool = True) -> float:
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError) as e:
        raise ValueError(code) from e
    if value > high or value < low or (not allow_low and value == low):
        raise ValueError(code)
    return value


def _text(raw: Any) -> str:
    return str(raw if raw is not None else "").strip()


class AdminConsole:
    """Catalog maintenance. Every successful write reloads the catalog."""

    def __init__(self, gateway: BaseListGateway, catalog: CatalogStore) -> None:
        self._gw = gateway
        self._catalog = catalog
        self._lists = catalog.lists

    def counts(self) -> dict[str, int]:
        return {
            "clients": len(self._catalog.clients),
            "projects": len(self._catalog.projects),
            "activities": len(self._catalog.activities),
            "assignments": len(self._catalog.assignments),
            "rules": len(self._catalog.rules),
            "holidays": len(self._catalog.holidays),
        }

    def _create(self, list_name: str, fields: dict[str, Any]) -> str:
        item = self._gw.create_item(list_name, fields)
        self._catalog.load()
        return item["id"]

    def _update(self, list_name: str, item_id: str, fields: dict[str, Any]) -> None:
        self._gw.update_item(list_name, item_id, fields)
        self._catalog.load()

    def _delete(self, list_name: str, item_id: str) -> None:
        self._gw.delete_item(list_name, item_id)
        self._catalog.load()

    # Clients

    def save_client(self, *, code: str, name: str, description: str, client_id: str | None = None) -> str:
        code, name, description = _text(code), _text(name), _text(description)
        if client_id is None and not validate_required(code):
            raise ValueError("client_code_required")
        if not validate_required(name):
            raise ValueError("client_name_required")
        if not validate_required(description):
            raise ValueError("client_description_required")

        if client_id is None:
            if self._catalog.client_by_code(code) is not None:
                raise ValueError("client_code_exists")
            new_id = self._create(self._lists.clients, Client(id="", code=code, name=name, description=description).to_fields())
            log.info("Client %s created", code)
            return new_id

        existing = self._catalog.client_by_id(client_id)
        if existing is None:
            raise ValueError("client_not_found")
        self._update(self._lists.clients, existing.id, {"Title": name, "ClientDescription": description})
        log.info("Client %s updated", existing.code)
        return existing.id

    def plan_client_delete(self, client_id: str) -> ClientDeletePlan:
        client = self._catalog.client_by_id(client_id)
        if client is None:
            raise ValueError("client_not_found")
        return ClientDeletePlan(
            client=client,
            projects=tuple(self._catalog.projects_for_client(client.code)),
            assignments=tuple(self._catalog.assignments_for_client(client.code)),
        )

    def delete_client(self, client_id: str) -> CascadeResult:
        """Delete a client with its projects and access records.

        Steps run one at a time: projects, then access records, then the
        client. Time entries are left alone.
        """
        plan = self.plan_client_delete(client_id)
        steps = [DeleteStep(self._lists.projects, p.id, f"project {p.name}") for p in plan.projects]
        steps += [DeleteStep(self._lists.access, a.id, f"access {a.user_email}") for a in plan.assignments]
        steps.append(DeleteStep(self._lists.clients, plan.client.id, f"client {plan.client.code}"))

        result = CascadeResult(client_code=plan.client.code)
        try:
            for step in steps:
                try:
                    self._gw.delete_item(step.list_name, step.item_id)
                except StorageError as e:
                    log.error("Cascade delete of client %s stopped at %s after %d step(s)", plan.client.code, step.label, len(result.completed))
                    raise CascadeDeleteError(plan.client.code, result.completed, step, e) from e
                result.completed.append(step)
        finally:
            self._reload_after_cascade(plan.client.code)

        log.info(
            "Client %s deleted with %d project(s) and %d access record(s)",
            plan.client.code,
            result.projects_deleted,
            result.assignments_deleted,
        )
        return result

    def _reload_after_cascade(self, client_code: str) -> None:
        # A failed reload must not replace the cascade outcome.
        try:
            self._catalog.load()
        except StorageError:
            log.exception("Catalog reload after deleting client %s failed", client_code)

    # Projects

    def save_project(
        self,
        *,
        client_code: str,
        name: str,
        description: str,
        billable: bool,
        project_id: str | None = None,
    ) -> str:
        client_code, name, description = _text(client_code), _text(name), _text(description)
        if self._catalog.client_by_code(client_code) is None:
            raise ValueError("client_not_found")
        if not validate_required(name):
            raise ValueError("project_name_required")
        if not validate_required(description):
            raise ValueError("project_description_required")

        other = self._catalog.project_by_name(name)
        if other is not None and other.id != project_id:
            raise ValueError("project_exists")

        fields = Project(id="", name=name, description=description, client_code=client_code, billable=bool(billable)).to_fields()
        if project_id is None:
            return self._create(self._lists.projects, fields)
        if not any(p.id == project_id for p in self._catalog.projects):
            raise ValueError("project_not_found")
        self._update(self._lists.projects, project_id, fields)
        return project_id

    def delete_project(self, project_id: str) -> None:
        if not any(p.id == project_id for p in self._catalog.projects):
            raise ValueError("project_not_found")
        self._delete(self._lists.projects, project_id)

    # Activities

    def save_activity(
        self,
        *,
        project_name: str,
        name: str,
        description: str,
        billable: bool,
        activity_id: str | None = None,
    ) -> str:
        project_name, name, description = _text(project_name), _text(name), _text(description)
        if self._catalog.project_by_name(project_name) is None:
            raise ValueError("project_not_found")
        if not validate_required(name):
            raise ValueError("activity_name_required")
        if not validate_required(description):
            raise ValueError("activity_description_required")

        other = self._catalog.find_activity(name, project_name)
        if other is not None and other.id != activity_id:
            raise ValueError("activity_exists")

        fields = Activity(id="", name=name, description=description, project_name=project_name, billable=bool(billable)).to_fields()
        if activity_id is None:
            return self._create(self._lists.activities, fields)
        if not any(a.id == activity_id for a in self._catalog.activities):
            raise ValueError("activity_not_found")
        self._update(self._lists.activities, activity_id, fields)
        return activity_id

    def delete_activity(self, activity_id: str) -> None:
        if not any(a.id == activity_id for a in self._catalog.activities):
            raise ValueError("activity_not_found")
        self._delete(self._lists.activities, activity_id)

    # User access

    def _check_assignment(self, team: str, allocation_percent: Any) -> tuple[str, float]:
        team = _text(team)
        if team not in TEAMS:
            raise ValueError("team_invalid")
        return team, _number(allocation_percent, "allocation_invalid", low=0, high=100)

    def assign_user(self, *, user_email: str, client_code: str, team: str, allocation_percent: Any) -> str:
        email = _text(user_email).lower()
        client_code = _text(client_code)
        if not validate_email(email):
            raise ValueError("email_invalid")
        if self._catalog.client_by_code(client_code) is None:
            raise ValueError("client_not_found")
        team, allocation = self._check_assignment(team, allocation_percent)

        for existing in self._catalog.assignments_for_user(email):
            if existing.client_code == client_code:
                raise DuplicateAssignmentError(email, client_code)

        fields = Assignment(id="", user_email=email, client_code=client_code, team=team, allocation_percent=allocation).to_fields()
        new_id = self._create(self._lists.access, fields)
        log.info("Granted %s access to client %s", email, client_code)
        return new_id

    def update_assignment(self, assignment_id: str, *, team: str, allocation_percent: Any) -> None:
        if not any(a.id == assignment_id for a in self._catalog.assignments):
            raise ValueError("assignment_not_found")
        team, allocation = self._check_assignment(team, allocation_percent)
        self._update(self._lists.access, assignment_id, {"Team": team, "AllocationPercent": allocation})

    def remove_assignment(self, assignment_id: str) -> None:
        if not any(a.id == assignment_id for a in self._catalog.assignments):
            raise ValueError("assignment_not_found")
        self._delete(self._lists.access, assignment_id)

    # Utilization rules

    def save_rule(
        self,
        *,
        client_code: str,
        target_utilization: Any,
        count_only_billable: bool,
        standard_hours_per_week: Any,
        holiday_calendar: str,
        calculation_method: str,
        rule_id: str | None = None,
    ) -> str:
        client_code = _text(client_code)
        if client_code and self._catalog.client_by_code(client_code) is None:
            raise ValueError("client_not_found")
        holiday_calendar = _text(holiday_calendar)
        if holiday_calendar not in HOLIDAY_TEAMS:
            raise ValueError("calendar_invalid")
        calculation_method = _text(calculation_method)
        if calculation_method not in CALCULATION_METHODS:
            raise ValueError("method_invalid")

        rule = UtilizationRule(
            id="",
            client_code=client_code,
            target_utilization=_number(target_utilization, "target_invalid", low=0, high=100, allow_low=False),
            count_only_billable=bool(count_only_billable),
            standard_hours_per_week=_number(standard_hours_per_week, "standard_hours_invalid", low=0, high=168, allow_low=False),
            holiday_calendar=holiday_calendar,
            calculation_method=calculation_method,
        )

        other = self._catalog.rule_for_client(client_code) if client_code else None
        if other is not None and other.id != rule_id:
            raise ValueError("rule_exists")

        if rule_id is None:
            return self._create(self._lists.rules, rule.to_fields())
        if not any(r.id == rule_id for r in self._catalog.rules):
            raise ValueError("rule_not_found")
        self._update(self._lists.rules, rule_id, rule.to_fields())
        return rule_id

    def delete_rule(self, rule_id: str) -> None:
        if not any(r.id == rule_id for r in self._catalog.rules):
            raise ValueError("rule_not_found")
        self._delete(self._lists.rules, rule_id)

    # Holidays

    def save_holiday(self, *, name: str, holiday_date: str, team: str, holiday_id: str | None = None) -> str:
        name, team = _text(name), _text(team) or "Both"
        if not validate_required(name):
            raise ValueError("holiday_name_required")
        try:
            when = parse_date(holiday_date)
        except ValueError as e:
            raise ValueError("holiday_date_invalid") from e
        if team not in HOLIDAY_TEAMS:
            raise ValueError("team_invalid")

        fields = Holiday(id="", name=name, date=when, team=team).to_fields()
        if holiday_id is None:
            return self._create(self._lists.holidays, fields)
        if not any(h.id == holiday_id for h in self._catalog.holidays):
            raise ValueError("holiday_not_found")
        self._update(self._lists.holidays, holiday_id, fields)
        return holiday_id

    def delete_holiday(self, holiday_id: str) -> None:
        if not any(h.id == holiday_id for h in self._catalog.holidays):
            raise ValueError("holiday_not_found")
        self._delete(self._lists.holidays, holiday_id)

    def import_public_holidays(self, *, year: Any, country: str, team: str, subdiv: str | None = None) -> int:
        """Add a country's public holidays for a year; existing dates for the team are skipped."""
        try:
            target_year = int(str(year).strip())
        except (TypeError, ValueError) as e:
            raise ValueError("year_invalid") from e
        if target_year < 1900 or target_year > 2200:
            raise ValueError("year_invalid")
        team = _text(team) or "Both"
        if team not in HOLIDAY_TEAMS:
            raise ValueError("team_invalid")

        try:
            calendar_days = holidays_lib.country_holidays(_text(country).upper(), subdiv=subdiv or None, years=target_year)
        except NotImplementedError as e:
            raise ValueError("country_unsupported") from e

        existing: set[date] = {h.date for h in self._catalog.holidays if h.team == team}
        created = 0
        for day, label in sorted(calendar_days.items()):
            if day in existing:
                continue
            self._gw.create_item(self._lists.holidays, Holiday(id="", name=str(label), date=day, team=team).to_fields())
            created += 1

        if created:
            self._catalog.load()
        log.info("Imported %d public holiday(s) for %s %s (%s)", created, country, target_year, team)
        return created
