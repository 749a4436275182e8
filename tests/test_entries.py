from __future__ import annotations

from datetime import date

import pytest

from hourlog.catalog import TimeEntry
from hourlog.entries import (
    EntryForm,
    FormState,
    TimeEntryRecorder,
    build_form,
    group_by_date,
    validate_email,
    validate_hours,
    week_start,
    week_total,
)


@pytest.mark.parametrize("value", [0.25, 1, 7.5, 24, "8", "0.75", " 2.5 "])
def test_validate_hours_accepts_quarter_steps(value) -> None:
    assert validate_hours(value) is True


@pytest.mark.parametrize("value", [0, -1, 0.1, 24.25, 25, "", "abc", None, True, float("nan"), float("inf")])
def test_validate_hours_rejects(value) -> None:
    assert validate_hours(value) is False


def test_validate_email() -> None:
    assert validate_email("a@b.co")
    assert not validate_email("a@b")
    assert not validate_email("a b@c.de")
    assert not validate_email("")


def test_form_cascade_resets_downstream(catalog) -> None:
    form = EntryForm()
    assert form.state is FormState.EMPTY

    form.choose_client(catalog, "ACME")
    assert form.state is FormState.CLIENT_CHOSEN
    assert [p.name for p in form.project_options] == ["Website", "Internal"]
    assert form.activity_options == []

    form.choose_project(catalog, "Website")
    assert form.state is FormState.PROJECT_CHOSEN
    assert [a.name for a in form.activity_options] == ["Development", "Meetings"]

    form.choose_activity("Development")
    assert form.state is FormState.ACTIVITY_CHOSEN
    form.date = "2025-03-04"
    form.hours = "7.5"
    assert form.state is FormState.SUBMITTABLE

    form.choose_client(catalog, "GLBX")
    assert form.project_name == ""
    assert form.activity_task == ""
    assert form.activity_options == []
    assert [p.name for p in form.project_options] == ["Routing"]
    assert form.state is FormState.CLIENT_CHOSEN

    form.choose_project(catalog, "Routing")
    form.choose_activity("Analysis")
    form.choose_project(catalog, "Routing")
    assert form.activity_task == ""


def test_form_errors_follow_field_order(catalog) -> None:
    assert EntryForm().error_code() == "client_required"
    assert build_form(catalog, client_code="ACME").error_code() == "project_required"
    assert build_form(catalog, client_code="ACME", project_name="Website").error_code() == "date_required"
    form = build_form(catalog, client_code="ACME", project_name="Website", entry_date="2025-03-04")
    assert form.error_code() == "activity_required"
    form.choose_activity("Development")
    form.hours = "0.3"
    assert form.error_code() == "hours_invalid"
    form.hours = "0.5"
    assert form.error_code() is None


def _valid_form(catalog, **overrides) -> EntryForm:
    values = {
        "client_code": "ACME",
        "project_name": "Website",
        "activity_task": "Development",
        "entry_date": "2025-03-04",
        "hours": "7.5",
        "notes": "Landing page",
    }
    values.update(overrides)
    return build_form(catalog, **values)


def test_invalid_hours_rejected_before_any_store_call(gateway, catalog) -> None:
    recorder = TimeEntryRecorder(gateway, catalog)
    with pytest.raises(ValueError, match="hours_invalid"):
        recorder.create_entry("alice@example.com", _valid_form(catalog, hours="30"))
    assert gateway.calls == []


def test_create_entry_writes_activity_task(gateway, catalog) -> None:
    recorder = TimeEntryRecorder(gateway, catalog)
    created = recorder.create_entry("alice@example.com", _valid_form(catalog))
    assert created.activity_task == "Development"
    assert created.hours == 7.5

    stored = gateway.list_items("TimeEntries")
    assert len(stored) == 1
    assert stored[0]["fields"]["ActivityTask"] == "Development"
    assert stored[0]["fields"]["Title"] == "alice@example.com"
    assert stored[0]["fields"]["Date"] == "2025-03-04"


def test_create_entry_requires_access_and_matching_catalog(gateway, catalog) -> None:
    recorder = TimeEntryRecorder(gateway, catalog)
    with pytest.raises(ValueError, match="client_not_assigned"):
        recorder.create_entry("alice@example.com", _valid_form(catalog, client_code="GLBX", project_name="Routing", activity_task="Analysis"))
    with pytest.raises(ValueError, match="project_not_found"):
        recorder.create_entry("alice@example.com", _valid_form(catalog, project_name="Routing"))
    with pytest.raises(ValueError, match="activity_not_found"):
        recorder.create_entry("alice@example.com", _valid_form(catalog, activity_task="Analysis"))
    with pytest.raises(ValueError, match="date_invalid"):
        recorder.create_entry("alice@example.com", _valid_form(catalog, entry_date="03/04/2025"))
    assert gateway.calls == []


def test_update_and_delete_only_own_entries(gateway, catalog) -> None:
    recorder = TimeEntryRecorder(gateway, catalog)
    created = recorder.create_entry("alice@example.com", _valid_form(catalog))

    updated = recorder.update_entry("Alice@Example.com", created.id, _valid_form(catalog, activity_task="Meetings", hours="2"))
    assert updated.activity_task == "Meetings"
    assert updated.hours == 2.0
    assert gateway.list_items("TimeEntries")[0]["fields"]["ActivityTask"] == "Meetings"

    with pytest.raises(ValueError, match="entry_not_found"):
        recorder.delete_entry("bob@example.com", created.id)

    recorder.delete_entry("alice@example.com", created.id)
    assert gateway.list_items("TimeEntries") == []


def test_copy_prefills_in_order_and_uses_today(gateway, catalog) -> None:
    recorder = TimeEntryRecorder(gateway, catalog)
    created = recorder.create_entry("alice@example.com", _valid_form(catalog, hours="3.25"))

    form = recorder.copy_form("alice@example.com", created.id, date(2025, 3, 20))
    assert form.client_code == "ACME"
    assert form.project_name == "Website"
    assert form.activity_task == "Development"
    assert [a.name for a in form.activity_options] == ["Development", "Meetings"]
    assert form.date == "2025-03-20"
    assert form.hours == "3.25"
    assert form.notes == "Landing page"
    assert form.state is FormState.SUBMITTABLE


def test_copy_stops_when_catalog_changed(gateway, catalog) -> None:
    gateway.create_item(
        "TimeEntries",
        {"Title": "alice@example.com", "Date": "2025-03-03", "ClientCode": "ACME", "ProjectName": "Website", "ActivityTask": "Retired", "Hours": 1},
    )
    recorder = TimeEntryRecorder(gateway, catalog)
    entry = recorder.list_entries("alice@example.com")[0]

    form = recorder.copy_form("alice@example.com", entry.id, date(2025, 3, 20))
    assert form.project_name == "Website"
    assert form.activity_task == ""
    assert form.state is FormState.PROJECT_CHOSEN


def _time_entry(day: str, hours: float) -> TimeEntry:
    return TimeEntry(
        id=day,
        user_email="alice@example.com",
        date=date.fromisoformat(day),
        client_code="ACME",
        project_name="Website",
        activity_task="Development",
        hours=hours,
        notes="",
    )


def test_week_starts_on_sunday() -> None:
    assert week_start(date(2025, 3, 19)) == date(2025, 3, 16)
    assert week_start(date(2025, 3, 16)) == date(2025, 3, 16)
    assert week_start(date(2025, 3, 22)) == date(2025, 3, 16)

    entries = [_time_entry("2025-03-15", 3), _time_entry("2025-03-16", 2), _time_entry("2025-03-19", 4)]
    assert week_total(entries, date(2025, 3, 19)) == 6


def test_group_by_date_newest_first() -> None:
    entries = [_time_entry("2025-03-03", 2), _time_entry("2025-03-05", 1), _time_entry("2025-03-03", 1.5)]
    groups = group_by_date(entries)
    assert [g.date.isoformat() for g in groups] == ["2025-03-05", "2025-03-03"]
    assert groups[1].total_hours == 3.5


def test_entries_listed_newest_first(gateway, catalog) -> None:
    recorder = TimeEntryRecorder(gateway, catalog)
    recorder.create_entry("alice@example.com", _valid_form(catalog, entry_date="2025-03-03"))
    recorder.create_entry("alice@example.com", _valid_form(catalog, entry_date="2025-03-07"))
    recorder.create_entry("alice@example.com", _valid_form(catalog, entry_date="2025-03-05"))
    assert [e.date.day for e in recorder.list_entries("alice@example.com")] == [7, 5, 3]
