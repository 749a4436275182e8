from __future__ import annotations

from datetime import date

import pytest

from hourlog.admin import AdminConsole, CascadeDeleteError, DuplicateAssignmentError


def test_duplicate_assignment_is_rejected_without_write(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    with pytest.raises(DuplicateAssignmentError) as excinfo:
        admin.assign_user(user_email="ALICE@example.com", client_code="ACME", team="Onshore", allocation_percent=100)
    assert str(excinfo.value) == "assignment_exists"
    assert gateway.calls == []
    assert len(catalog.assignments) == 3


def test_assign_user_validates_and_reloads(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    with pytest.raises(ValueError, match="email_invalid"):
        admin.assign_user(user_email="carol@", client_code="ACME", team="Onshore", allocation_percent=100)
    with pytest.raises(ValueError, match="team_invalid"):
        admin.assign_user(user_email="carol@example.com", client_code="ACME", team="Both", allocation_percent=100)
    with pytest.raises(ValueError, match="allocation_invalid"):
        admin.assign_user(user_email="carol@example.com", client_code="ACME", team="Onshore", allocation_percent=120)
    with pytest.raises(ValueError, match="client_not_found"):
        admin.assign_user(user_email="carol@example.com", client_code="NOPE", team="Onshore", allocation_percent=100)

    admin.assign_user(user_email="Carol@Example.com", client_code="GLBX", team="Offshore", allocation_percent="75")
    carol = catalog.assignments_for_user("carol@example.com")
    assert len(carol) == 1
    assert carol[0].user_email == "carol@example.com"
    assert carol[0].allocation_percent == 75.0

    admin.update_assignment(carol[0].id, team="Onshore", allocation_percent=40)
    assert catalog.assignments_for_user("carol@example.com")[0].team == "Onshore"


def test_client_fields_required_and_code_unique(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    with pytest.raises(ValueError, match="client_code_required"):
        admin.save_client(code=" ", name="New", description="d")
    with pytest.raises(ValueError, match="client_name_required"):
        admin.save_client(code="NEW", name="", description="d")
    with pytest.raises(ValueError, match="client_description_required"):
        admin.save_client(code="NEW", name="New", description="")
    with pytest.raises(ValueError, match="client_code_exists"):
        admin.save_client(code="ACME", name="Other", description="d")

    new_id = admin.save_client(code="NEW", name="Newco", description="Startup")
    assert catalog.client_by_code("NEW").id == new_id


def test_client_code_is_immutable_on_update(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    acme = catalog.client_by_code("ACME")
    admin.save_client(code="CHANGED", name="Acme Industries", description="Manufacturing", client_id=acme.id)
    updated = catalog.client_by_id(acme.id)
    assert updated.code == "ACME"
    assert updated.name == "Acme Industries"


def test_cascade_delete_order_and_entries_preserved(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    admin.assign_user(user_email="carol@example.com", client_code="ACME", team="Onshore", allocation_percent=100)
    gateway.create_item(
        "TimeEntries",
        {"Title": "alice@example.com", "Date": "2025-03-03", "ClientCode": "ACME", "ProjectName": "Website", "ActivityTask": "Development", "Hours": 8},
    )
    gateway.calls.clear()

    acme = catalog.client_by_code("ACME")
    plan = admin.plan_client_delete(acme.id)
    assert "- 2 project(s)" in plan.confirmation_message
    assert "- 3 user access record(s)" in plan.confirmation_message
    assert "Time entries will be preserved." in plan.confirmation_message

    result = admin.delete_client(acme.id)
    deleted_lists = [list_name for op, list_name, _ in gateway.calls if op == "delete"]
    assert deleted_lists == ["Projects", "Projects", "UserClientAccess", "UserClientAccess", "UserClientAccess", "Clients"]
    assert result.projects_deleted == 2
    assert result.assignments_deleted == 3

    assert catalog.client_by_code("ACME") is None
    assert catalog.projects_for_client("ACME") == []
    assert catalog.assignments_for_client("ACME") == []
    assert len(gateway.list_items("TimeEntries")) == 1
    assert catalog.client_by_code("GLBX") is not None


def test_cascade_partial_failure_can_be_rerun(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    acme = catalog.client_by_code("ACME")
    second_project = catalog.projects_for_client("ACME")[1]
    gateway.fail_deletes.add(second_project.id)

    with pytest.raises(CascadeDeleteError) as excinfo:
        admin.delete_client(acme.id)
    err = excinfo.value
    assert err.partial is True
    assert len(err.completed) == 1
    assert err.failed_step.item_id == second_project.id
    assert [p.name for p in catalog.projects_for_client("ACME")] == [second_project.name]
    assert catalog.client_by_code("ACME") is not None

    gateway.fail_deletes.clear()
    admin.delete_client(acme.id)
    assert catalog.client_by_code("ACME") is None
    assert catalog.assignments_for_client("ACME") == []


def test_cascade_total_failure_changes_nothing(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    acme = catalog.client_by_code("ACME")
    gateway.fail_deletes.add(catalog.projects_for_client("ACME")[0].id)

    with pytest.raises(CascadeDeleteError) as excinfo:
        admin.delete_client(acme.id)
    assert excinfo.value.partial is False
    assert len(catalog.projects_for_client("ACME")) == 2


def test_cascade_error_survives_failed_reload(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    acme = catalog.client_by_code("ACME")
    second_project = catalog.projects_for_client("ACME")[1]
    gateway.fail_deletes.add(second_project.id)
    gateway.fail_reads = True

    with pytest.raises(CascadeDeleteError) as excinfo:
        admin.delete_client(acme.id)
    err = excinfo.value
    assert err.partial is True
    assert err.client_code == "ACME"
    assert err.failed_step.item_id == second_project.id
    assert [step.list_name for step in err.completed] == ["Projects"]


def test_project_and_activity_crud(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    with pytest.raises(ValueError, match="client_not_found"):
        admin.save_project(client_code="NOPE", name="X", description="d", billable=True)
    with pytest.raises(ValueError, match="project_exists"):
        admin.save_project(client_code="ACME", name="Website", description="d", billable=True)

    pid = admin.save_project(client_code="GLBX", name="Warehouse", description="WMS", billable=False)
    assert catalog.project_by_name("Warehouse").billable is False

    with pytest.raises(ValueError, match="project_not_found"):
        admin.save_activity(project_name="Nope", name="A", description="d", billable=True)
    aid = admin.save_activity(project_name="Warehouse", name="Support", description="Tickets", billable=True)
    assert [a.name for a in catalog.activities_for_project("Warehouse")] == ["Support"]
    with pytest.raises(ValueError, match="activity_exists"):
        admin.save_activity(project_name="Warehouse", name="Support", description="again", billable=True)

    admin.save_activity(project_name="Warehouse", name="Support", description="Tickets", billable=False, activity_id=aid)
    assert catalog.find_activity("Support", "Warehouse").billable is False

    admin.delete_activity(aid)
    admin.delete_project(pid)
    assert catalog.project_by_name("Warehouse") is None
    with pytest.raises(ValueError, match="project_not_found"):
        admin.delete_project(pid)


def test_rules_validation_and_one_rule_per_client(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    common = {"count_only_billable": True, "standard_hours_per_week": 40, "holiday_calendar": "Both", "calculation_method": "Theoretical Available Hours"}
    with pytest.raises(ValueError, match="target_invalid"):
        admin.save_rule(client_code="ACME", target_utilization="0", **common)
    with pytest.raises(ValueError, match="calendar_invalid"):
        admin.save_rule(client_code="ACME", target_utilization=80, **{**common, "holiday_calendar": "Mars"})
    with pytest.raises(ValueError, match="method_invalid"):
        admin.save_rule(client_code="ACME", target_utilization=80, **{**common, "calculation_method": "Guess"})

    rid = admin.save_rule(client_code="ACME", target_utilization=85, **common)
    assert catalog.rule_for_client("ACME").target_utilization == 85.0
    with pytest.raises(ValueError, match="rule_exists"):
        admin.save_rule(client_code="ACME", target_utilization=70, **common)

    admin.save_rule(client_code="ACME", target_utilization=70, rule_id=rid, **common)
    assert catalog.rule_for_client("ACME").target_utilization == 70.0
    admin.delete_rule(rid)
    assert catalog.rule_for_client("ACME") is None


def test_holidays_crud_and_public_import(gateway, catalog) -> None:
    admin = AdminConsole(gateway, catalog)
    with pytest.raises(ValueError, match="holiday_date_invalid"):
        admin.save_holiday(name="Bad", holiday_date="not-a-date", team="Both")
    with pytest.raises(ValueError, match="team_invalid"):
        admin.save_holiday(name="Bad", holiday_date="2025-01-02", team="Remote")

    hid = admin.save_holiday(name="Company Day", holiday_date="2025-07-04", team="Onshore")
    assert catalog.holidays[0].date == date(2025, 7, 4)

    created = admin.import_public_holidays(year=2025, country="us", team="Onshore")
    dates = [h.date for h in catalog.holidays if h.team == "Onshore"]
    assert created == len(dates) - 1
    assert dates.count(date(2025, 7, 4)) == 1
    assert date(2025, 12, 25) in dates

    assert admin.import_public_holidays(year=2025, country="US", team="Onshore") == 0

    with pytest.raises(ValueError, match="country_unsupported"):
        admin.import_public_holidays(year=2025, country="ZZ", team="Both")

    admin.delete_holiday(hid)
    assert date(2025, 7, 4) not in [h.date for h in catalog.holidays]


def test_counts(gateway, catalog) -> None:
    counts = AdminConsole(gateway, catalog).counts()
    assert counts == {"clients": 2, "projects": 3, "activities": 4, "assignments": 3, "rules": 0, "holidays": 0}
