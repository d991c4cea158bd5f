import io
import pytest
from datetime import date, timedelta
from openpyxl import load_workbook
from app.models.user import UserRole
from app.routers.reports import _period
from app.services import leave_service
from app.services import leave_balance as ledger
from app.services.financial_year import get_current_financial_year

@pytest.fixture
def team_leaves(db_session, employee_user, manager_user, make_user, leave_types):
    """Two requests from the manager's report and one from another department."""
    outsider = make_user(UserRole.EMPLOYEE, department="Finance")
    start = date.today() + timedelta(days=5)

    def submit(user, offset, days, leave_type="Annual Leave"):
        return leave_service.submit_leave_request(db_session, user, {
            "leave_type_id": leave_types[leave_type].id,
            "start_date": start + timedelta(days=offset),
            "end_date": start + timedelta(days=offset + days - 1),
            "reason": "Scheduled time away from work",
        })

    first = submit(employee_user, 0, 2)
    submit(employee_user, 10, 1, "Sick Leave")
    submit(outsider, 0, 3)
    leave_service.approve_leave_request(db_session, first.id, manager_user)
    ledger.initialize_employee_balances(db_session, employee_user.id)
    return {"start": start, "outsider": outsider}

@pytest.mark.parametrize("month, expected_start", [
    (4, date(2024, 4, 1)),
    (12, date(2024, 12, 1)),
    (1, date(2025, 1, 1)),
    (3, date(2025, 3, 1)),
])
def test_period_month_maps_into_financial_year(month, expected_start):
    year, start, end = _period(2024, month)
    assert year == 2024
    assert start == expected_start
    assert end.month == month and end.year == expected_start.year

def test_period_whole_financial_year():
    assert _period(2024, None) == (2024, date(2024, 4, 1), date(2025, 3, 31))

def test_reports_require_hr(client, employee_user, manager_user, auth_headers):
    for user in (employee_user, manager_user):
        assert client.get("/api/reports/dashboard", headers=auth_headers(user)).status_code == 403

def test_dashboard(client, hr_user, auth_headers, team_leaves):
    data = client.get("/api/reports/dashboard", headers=auth_headers(hr_user)).json()

    by_status = {row["status"]: row for row in data["leave_stats"]}
    assert by_status["approved"]["count"] == 1
    assert by_status["pending"]["count"] == 2
    assert by_status["pending"]["total_days"] == 4.0
    assert data["pending_count"] == 2

    departments = {row["department"]: row["count"] for row in data["department_stats"]}
    assert departments == {"Engineering": 2, "Finance": 1}

def test_dashboard_department_filter(client, hr_user, auth_headers, team_leaves):
    data = client.get(
        "/api/reports/dashboard", headers=auth_headers(hr_user), params={"department": "Finance"}
    ).json()
    assert [row["count"] for row in data["leave_stats"]] == [1]

def test_leave_report_json(client, hr_user, auth_headers, team_leaves):
    start = team_leaves["start"]
    params = {
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=30)).isoformat(),
        "status": "pending",
    }
    data = client.get("/api/reports/leave-report", headers=auth_headers(hr_user), params=params).json()
    assert data["pagination"]["total_items"] == 2
    assert {row["status"] for row in data["leaves"]} == {"pending"}

def test_leave_report_rejects_inverted_range(client, hr_user, auth_headers, leave_types):
    params = {"start_date": "2025-05-10", "end_date": "2025-05-01"}
    response = client.get("/api/reports/leave-report", headers=auth_headers(hr_user), params=params)
    assert response.status_code == 400

def test_leave_report_csv(client, hr_user, auth_headers, team_leaves):
    start = team_leaves["start"]
    params = {
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=30)).isoformat(),
        "format": "csv",
    }
    response = client.get("/api/reports/leave-report", headers=auth_headers(hr_user), params=params)
    assert response.status_code == 200
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("Leave ID,Employee,Department")
    assert len(lines) == 4

def test_leave_report_xlsx(client, hr_user, auth_headers, team_leaves):
    start = team_leaves["start"]
    params = {
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=30)).isoformat(),
        "department": "Finance",
        "format": "xlsx",
    }
    response = client.get("/api/reports/leave-report", headers=auth_headers(hr_user), params=params)
    sheet = load_workbook(io.BytesIO(response.content)).active
    assert sheet.max_row == 2
    assert sheet["C2"].value == "Finance"

def test_employee_summary(client, hr_user, employee_user, auth_headers, team_leaves):
    data = client.get("/api/reports/employee-summary", headers=auth_headers(hr_user)).json()
    entry = next(row for row in data["users"] if row["user"]["id"] == employee_user.id)
    assert {b["leave_type_name"] for b in entry["balances"]} >= {"Annual Leave", "Sick Leave"}

def test_department_report(client, hr_user, auth_headers, team_leaves):
    data = client.get("/api/reports/department-report", headers=auth_headers(hr_user)).json()
    rows = {(row["department"], row["status"]): row for row in data["department_stats"]}
    assert rows[("Finance", "pending")]["total_days"] == 3.0
    assert rows[("Engineering", "approved")]["total_requests"] == 1

def test_team_report_scoped_to_direct_reports(client, manager_user, employee_user, auth_headers, team_leaves):
    data = client.get("/api/reports/team-report", headers=auth_headers(manager_user)).json()
    assert [member["id"] for member in data["team_members"]] == [employee_user.id]
    assert {leave["user_id"] for leave in data["team_leaves"]} == {employee_user.id}
    assert len(data["team_leaves"]) == 2
    assert data["team_balances"]

def test_team_report_manager_only(client, hr_user, auth_headers):
    assert client.get("/api/reports/team-report", headers=auth_headers(hr_user)).status_code == 403

def test_retired_balances_are_left_out(client, hr_user, manager_user, employee_user, auth_headers, team_leaves, db_session, leave_types):
    sick = ledger._find_balance(
        db_session, employee_user.id, leave_types["Sick Leave"].id, get_current_financial_year()
    )
    sick.is_active = False
    db_session.commit()

    summary = client.get("/api/reports/employee-summary", headers=auth_headers(hr_user)).json()
    entry = next(row for row in summary["users"] if row["user"]["id"] == employee_user.id)
    assert "Sick Leave" not in {b["leave_type_name"] for b in entry["balances"]}

    team = client.get("/api/reports/team-report", headers=auth_headers(manager_user)).json()
    assert "Sick Leave" not in {b["leave_type_name"] for b in team["team_balances"]}
    assert "Annual Leave" in {b["leave_type_name"] for b in team["team_balances"]}
