from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from hourlog.catalog import (
    DEFAULT_STANDARD_HOURS_PER_WEEK,
    DEFAULT_TARGET_UTILIZATION,
    METHOD_THEORETICAL,
    TEAM_BOTH,
    Activity,
    Assignment,
    CatalogStore,
    Holiday,
    TimeEntry,
    UtilizationRule,
)


WORKDAYS_PER_WEEK = 5


@dataclass(frozen=True)
class HourTotals:
    billable_hours: float
    non_billable_hours: float

    @property
    def total_hours(self) -> float:
        return self.billable_hours + self.non_billable_hours


@dataclass(frozen=True)
class UtilizationResult:
    user_email: str
    client_code: str
    billable_hours: float
    non_billable_hours: float
    total_hours: float
    available_hours: float
    utilization: float
    target: float
    allocation: float
    team: str

    @property
    def below_target(self) -> bool:
        return self.utilization < self.target

    def as_dict(self) -> dict[str, object]:
        return {
            "user_email": self.user_email,
            "client_code": self.client_code,
            "billable_hours": round(self.billable_hours, 2),
            "non_billable_hours": round(self.non_billable_hours, 2),
            "total_hours": round(self.total_hours, 2),
            "available_hours": round(self.available_hours, 2),
            "utilization": round(self.utilization, 1),
            "target": self.target,
            "allocation": self.allocation,
            "team": self.team,
            "below_target": self.below_target,
        }


def _month_days(year: int, month: int) -> list[date]:
    last = calendar.monthrange(year, month)[1]
    first = date(year, month, 1)
    return [first + timedelta(days=i) for i in range(last)]


def business_days_in_month(year: int, month: int) -> int:
    return sum(1 for d in _month_days(year, month) if d.weekday() < 5)


def holiday_applies(holiday: Holiday, team: str, holiday_calendar: str) -> bool:
    # A "Both" calendar follows the user's own team; a team calendar follows that team.
    if holiday.team == TEAM_BOTH:
        return True
    if holiday_calendar == TEAM_BOTH:
        return holiday.team == team
    return holiday.team == holiday_calendar


def applicable_holidays(
    holidays: Iterable[Holiday],
    year: int,
    month: int,
    team: str,
    holiday_calendar: str,
) -> list[Holiday]:
    out: list[Holiday] = []
    for holiday in holidays:
        if holiday.date.year != year or holiday.date.month != month:
            continue
        if holiday.date.weekday() >= 5:
            continue
        if holiday_applies(holiday, team, holiday_calendar):
            out.append(holiday)
    return out


def theoretical_available_hours(
    year: int,
    month: int,
    standard_hours_per_week: float,
    allocation_percent: float,
    team: str,
    holiday_calendar: str,
    holidays: Iterable[Holiday],
) -> float:
    """Working days after holidays, times the daily standard, scaled by allocation."""
    working_days = business_days_in_month(year, month) - len(applicable_holidays(holidays, year, month, team, holiday_calendar))
    hours_per_day = standard_hours_per_week / WORKDAYS_PER_WEEK
    return working_days * hours_per_day * (allocation_percent / 100.0)


def aggregate_hours(
    entries: Iterable[TimeEntry],
    activities: Iterable[Activity],
    user_email: str,
    client_code: str,
    year: int,
    month: int,
) -> HourTotals:
    billable_by_key: dict[tuple[str, str], bool] = {}
    for activity in activities:
        billable_by_key.setdefault((activity.name, activity.project_name), activity.billable)
    lowered = user_email.strip().lower()
    billable = 0.0
    non_billable = 0.0
    for entry in entries:
        if entry.user_email.lower() != lowered or entry.client_code != client_code:
            continue
        if entry.date.year != year or entry.date.month != month:
            continue
        if billable_by_key.get((entry.activity_task, entry.project_name), False):
            billable += entry.hours
        else:
            non_billable += entry.hours
    return HourTotals(billable_hours=billable, non_billable_hours=non_billable)


def calculate_utilization(
    *,
    assignment: Assignment,
    rule: UtilizationRule | None,
    year: int,
    month: int,
    entries: Iterable[TimeEntry],
    activities: Iterable[Activity],
    holidays: Iterable[Holiday],
) -> UtilizationResult:
    totals = aggregate_hours(entries, activities, assignment.user_email, assignment.client_code, year, month)
    allocation = assignment.allocation_percent

    if rule is None:
        available = theoretical_available_hours(
            year, month, DEFAULT_STANDARD_HOURS_PER_WEEK, allocation, assignment.team, TEAM_BOTH, holidays
        )
        count_only_billable = True
        target = DEFAULT_TARGET_UTILIZATION
    else:
        if rule.calculation_method == METHOD_THEORETICAL:
            available = theoretical_available_hours(
                year, month, rule.standard_hours_per_week, allocation, assignment.team, rule.holiday_calendar, holidays
            )
        else:
            available = totals.total_hours
        count_only_billable = rule.count_only_billable
        target = rule.target_utilization

    numerator = totals.billable_hours if count_only_billable else totals.total_hours
    utilization = (numerator / available) * 100.0 if available > 0 else 0.0

    return UtilizationResult(
        user_email=assignment.user_email,
        client_code=assignment.client_code,
        billable_hours=totals.billable_hours,
        non_billable_hours=totals.non_billable_hours,
        total_hours=totals.total_hours,
        available_hours=available,
        utilization=utilization,
        target=target,
        allocation=allocation,
        team=assignment.team,
    )


class UtilizationCalculator:
    def __init__(self, catalog: CatalogStore) -> None:
        self._catalog = catalog

    def _results(self, assignments: Iterable[Assignment], entries: list[TimeEntry], year: int, month: int) -> list[UtilizationResult]:
        out: list[UtilizationResult] = []
        for assignment in assignments:
            out.append(
                calculate_utilization(
                    assignment=assignment,
                    rule=self._catalog.rule_for_client(assignment.client_code),
                    year=year,
                    month=month,
                    entries=entries,
                    activities=self._catalog.activities,
                    holidays=self._catalog.holidays,
                )
            )
        return out

    def for_user(self, user_email: str, year: int, month: int) -> list[UtilizationResult]:
        entries = self._catalog.load_time_entries(user_email)
        return self._results(self._catalog.assignments_for_user(user_email), entries, year, month)

    def for_all(self, year: int, month: int) -> list[UtilizationResult]:
        entries = self._catalog.load_time_entries()
        results = self._results(self._catalog.assignments, entries, year, month)
        results.sort(key=lambda r: (r.user_email.lower(), r.client_code))
        return results
