import pytest
from decimal import Decimal
from fastapi import status
from app.models.audit_log import AuditLog
from app.models.default_balance import DefaultBalance, DefaultBalancePointer
from app.models.leave_balance import LeaveBalance
from app.services import leave_balance as ledger
from app.services.financial_year import get_current_financial_year

@pytest.fixture
def admin_headers(admin_user, auth_headers):
    return auth_headers(admin_user)

def test_admin_routes_reject_other_roles(client, hr_user, employee_user, auth_headers):
    for user in (hr_user, employee_user):
        response = client.get("/api/admin/financial-year-info", headers=auth_headers(user))
        assert response.status_code == status.HTTP_403_FORBIDDEN

def test_financial_year_info(client, admin_headers):
    data = client.get("/api/admin/financial-year-info", headers=admin_headers).json()
    year = get_current_financial_year()
    assert data["current_financial_year"] == year
    assert data["start_date"] == f"{year}-04-01"
    assert data["end_date"] == f"{year + 1}-03-31"
    assert data["next_financial_year"]["year"] == year + 1

def test_initialize_and_read_employee_balances(client, admin_headers, employee_user, leave_types):
    response = client.post(f"/api/admin/employees/{employee_user.id}/initialize-balances", headers=admin_headers)
    assert response.status_code == status.HTTP_201_CREATED
    assert len(response.json()["balances"]) == len(leave_types)

    # A second call creates nothing new
    again = client.post(f"/api/admin/employees/{employee_user.id}/initialize-balances", headers=admin_headers)
    assert len(again.json()["balances"]) == len(leave_types)

    data = client.get(f"/api/admin/employees/{employee_user.id}/leave-balance", headers=admin_headers).json()
    assert data["year"] == get_current_financial_year()
    annual = next(b for b in data["balances"] if b["leave_type_name"] == "Annual Leave")
    assert annual["remaining_days"] == 15.0

def test_initialize_unknown_employee(client, admin_headers, leave_types):
    response = client.post("/api/admin/employees/999999/initialize-balances", headers=admin_headers)
    assert response.status_code == 404

def test_adjust_balance_is_audited(client, admin_headers, admin_user, employee_user, leave_types, db_session):
    annual = leave_types["Annual Leave"]
    response = client.put(
        f"/api/admin/employees/{employee_user.id}/leave-balance",
        headers=admin_headers,
        json={"leave_type_id": annual.id, "used_days": 4},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total_days"] == 15.0
    assert data["remaining_days"] == 11.0
    assert data["notes"] == "Admin adjustment"

    entry = db_session.query(AuditLog).filter(AuditLog.action == "balance_adjusted").one()
    assert entry.user_id == admin_user.id
    assert entry.before_state is None
    assert entry.after_state["remaining_days"] == 11.0
    assert entry.details["fields"] == ["used_days"]

def test_adjust_balance_validation(client, admin_headers, employee_user, leave_types):
    response = client.put(
        f"/api/admin/employees/{employee_user.id}/leave-balance",
        headers=admin_headers,
        json={"leave_type_id": leave_types["Annual Leave"].id, "used_days": -1},
    )
    assert response.status_code == 422
    assert response.json()["errors"][0]["field"] == "used_days"

def test_adjust_carry_over_bounds(client, admin_headers, employee_user, leave_types):
    url = f"/api/admin/employees/{employee_user.id}/leave-balance"
    annual_id = leave_types["Annual Leave"].id

    negative = client.put(url, headers=admin_headers, json={"leave_type_id": annual_id, "carried_over_days": -1})
    assert negative.status_code == 422
    assert negative.json()["errors"][0]["field"] == "carried_over_days"

    over_cap = client.put(url, headers=admin_headers, json={"leave_type_id": annual_id, "carried_over_days": 40})
    assert over_cap.status_code == 400
    assert over_cap.json()["errors"][0]["code"] == "CARRY_OVER_EXCEEDED"

def test_bulk_update(client, admin_headers, employee_user, leave_types):
    annual = leave_types["Annual Leave"]
    response = client.post(
        "/api/admin/employees/bulk-update-leave-balances",
        headers=admin_headers,
        json={"updates": [
            {"user_id": employee_user.id, "leave_type_id": annual.id, "carried_over_days": 2},
            {"user_id": 999999, "leave_type_id": annual.id, "used_days": 1},
        ]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Updated 1 of 2 balances"
    assert data["results"][0]["balance"]["remaining_days"] == 17.0
    assert data["results"][1]["success"] is False

def test_all_employee_balances(client, admin_headers, employee_user, leave_types):
    client.post(f"/api/admin/employees/{employee_user.id}/initialize-balances", headers=admin_headers)
    data = client.get("/api/admin/employees/leave-balances", headers=admin_headers).json()

    entry = next(e for e in data["employees"] if e["user"]["id"] == employee_user.id)
    assert len(entry["balances"]) == len(leave_types)

def test_rollover_endpoint(client, admin_headers, employee_user, leave_types, db_session):
    response = client.post("/api/admin/financial-year-rollover", headers=admin_headers, json={"new_year": 2026})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    # admin, manager and employee
    assert data["processed_count"] == 3
    assert data["created_count"] == 3 * len(leave_types)

    event = db_session.query(AuditLog).filter(AuditLog.action == "ops_financial_year_rollover").one()
    assert event.details["new_year"] == 2026
    assert event.details["policy_version"] is None

    rerun = client.post("/api/admin/financial-year-rollover", headers=admin_headers, json={"new_year": 2026}).json()
    assert rerun["created_count"] == 0

def test_rollover_rejects_out_of_range_year(client, admin_headers):
    response = client.post("/api/admin/financial-year-rollover", headers=admin_headers, json={"new_year": 2031})
    assert response.status_code == 422

def test_rollover_uses_saved_policy(client, admin_headers, employee_user, leave_types, db_session):
    client.post(
        "/api/admin/default-balance",
        headers=admin_headers,
        json={"annual_leave": 25, "sick_leave": 12, "personal_leave": 6, "max_carry_over": 4},
    )
    client.post("/api/admin/financial-year-rollover", headers=admin_headers, json={"new_year": 2026})

    annual = ledger._find_balance(db_session, employee_user.id, leave_types["Annual Leave"].id, 2026)
    assert annual.total_days == Decimal("25.0")
    assert annual.max_carry_over == Decimal("4.0")

# --- Default balance policy ---

def test_default_balance_falls_back_when_never_saved(client, admin_headers):
    data = client.get("/api/admin/default-balance", headers=admin_headers).json()
    assert data["version"] is None
    assert data["annual_leave"] == 20.0
    assert data["sick_leave"] == 10.0
    assert data["personal_leave"] == 5.0
    assert data["max_carry_over"] == 5.0

def test_default_balance_versions(client, admin_headers, admin_user, db_session):
    first = client.post(
        "/api/admin/default-balance",
        headers=admin_headers,
        json={"annual_leave": 21, "sick_leave": 10, "personal_leave": 5, "max_carry_over": 5},
    )
    assert first.status_code == status.HTTP_201_CREATED
    assert first.json()["version"] == 1

    second = client.post(
        "/api/admin/default-balance",
        headers=admin_headers,
        json={"annual_leave": 24, "sick_leave": 9, "personal_leave": 4, "max_carry_over": 3, "notes": "2026 review"},
    ).json()
    assert second["version"] == 2
    assert second["updated_by"] == admin_user.id

    current = client.get("/api/admin/default-balance", headers=admin_headers).json()
    assert current["version"] == 2
    assert current["annual_leave"] == 24.0
    assert current["notes"] == "2026 review"

    # History is append-only and the pointer tracks the newest version
    history = client.get("/api/admin/default-balance/history", headers=admin_headers).json()
    assert [row["version"] for row in history] == [2, 1]
    assert history[1]["annual_leave"] == 21.0
    assert db_session.query(DefaultBalance).count() == 2
    pointer = db_session.query(DefaultBalancePointer).one()
    assert pointer.current_id == second["id"]

# --- Leave types ---

def test_create_and_deactivate_leave_type(client, admin_headers, leave_types, employee_user, auth_headers):
    response = client.post(
        "/api/admin/leave-types",
        headers=admin_headers,
        json={"name": "Personal Leave", "default_days": 5, "description": "Personal matters"},
    )
    assert response.status_code == status.HTTP_201_CREATED
    leave_type_id = response.json()["id"]

    duplicate = client.post(
        "/api/admin/leave-types", headers=admin_headers, json={"name": "Personal Leave", "default_days": 5}
    )
    assert duplicate.status_code == 400

    deactivated = client.put(f"/api/admin/leave-types/{leave_type_id}/deactivate", headers=admin_headers)
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    names = [t["name"] for t in client.get("/api/leaves/types", headers=auth_headers(employee_user)).json()]
    assert "Personal Leave" not in names
    assert "Annual Leave" in names

def test_deactivate_unknown_leave_type(client, admin_headers, leave_types):
    response = client.put("/api/admin/leave-types/999999/deactivate", headers=admin_headers)
    assert response.status_code == 404

def test_seeded_catalog(client, admin_headers, leave_types):
    catalog = {t["name"]: t for t in client.get("/api/admin/leave-types", headers=admin_headers).json()}
    assert {name: t["default_days"] for name, t in catalog.items()} == {
        "Annual Leave": 15.0,
        "Sick Leave": 10.0,
        "Bereavement Leave": 3.0,
        "Leave Without Pay": 0.0,
    }
    assert all(t["max_carry_forward"] == 0 for t in catalog.values())
