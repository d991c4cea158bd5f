import pytest
from fastapi import status
from app.models.audit_log import AuditLog
from app.models.leave_balance import LeaveBalance
from app.models.user import User, UserRole

def _login(client, email, password="Password123!"):
    return client.post("/api/auth/login", json={"email": email, "password": password})

def test_login_success(client, employee_user, db_session):
    """Test successful login with valid credentials."""
    response = _login(client, employee_user.email)
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert "access_token" in data
    assert "refresh_token" in data
    assert data["token_type"] == "bearer"
    assert data["user"]["role"] == "employee"

    db_session.refresh(employee_user)
    assert employee_user.last_login is not None

def test_login_invalid_credentials(client, leave_types):
    """Test login failure with wrong password."""
    response = _login(client, "nonexistent@example.com", "wrong")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["success"] is False

def test_failed_login_is_audited_without_password(client, employee_user, db_session):
    _login(client, employee_user.email, "WrongPassword!")
    entry = db_session.query(AuditLog).filter(AuditLog.action == "failed_login").one()
    assert entry.is_successful is False
    assert entry.details == {"email": employee_user.email}

def test_inactive_user_cannot_login(client, make_user):
    user = make_user(UserRole.EMPLOYEE, is_active=False)
    response = _login(client, user.email)
    assert response.status_code == status.HTTP_403_FORBIDDEN

def test_me_requires_token(client):
    response = client.get("/api/auth/me")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

def test_me_returns_current_user(client, employee_user, auth_headers):
    response = client.get("/api/auth/me", headers=auth_headers(employee_user))
    assert response.status_code == 200
    data = response.json()
    assert data["email"] == employee_user.email
    assert data["manager_id"] == employee_user.manager_id
    assert "hashed_password" not in data

def test_refresh_rotates_session(client, employee_user):
    tokens = _login(client, employee_user.email).json()

    response = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200
    new_tokens = response.json()
    assert new_tokens["refresh_token"] != tokens["refresh_token"]

    # The old refresh token has been revoked
    reused = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert reused.status_code == 401
    assert reused.json()["errors"][0]["code"] == "AUTH_FAILED"

def test_access_token_cannot_refresh(client, employee_user, get_token):
    response = client.post("/api/auth/refresh", json={"refresh_token": get_token(employee_user)})
    assert response.status_code == 401

def test_logout_revokes_refresh_token(client, employee_user):
    tokens = _login(client, employee_user.email).json()
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    response = client.post("/api/auth/logout", headers=headers, json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200
    assert client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]}).status_code == 401

def test_register_requires_admin(client, hr_user, auth_headers):
    response = client.post("/api/auth/register", headers=auth_headers(hr_user), json={})
    assert response.status_code == status.HTTP_403_FORBIDDEN

def test_register_creates_user_and_balances(client, admin_user, manager_user, auth_headers, db_session, leave_types):
    payload = {
        "employee_code": "EMP-9001",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "password": "Password123!",
        "role": "employee",
        "department": "Engineering",
        "position": "Engineer",
        "manager_id": manager_user.id,
        "hire_date": "2024-05-01",
    }
    response = client.post("/api/auth/register", headers=auth_headers(admin_user), json=payload)
    assert response.status_code == status.HTTP_201_CREATED
    user_id = response.json()["id"]

    balances = db_session.query(LeaveBalance).filter(LeaveBalance.user_id == user_id).all()
    assert len(balances) == len(leave_types)

    # The new account can log in
    assert _login(client, "ada@example.com").status_code == 200

def test_register_rejects_duplicate_email(client, admin_user, employee_user, auth_headers):
    payload = {
        "employee_code": "EMP-9002",
        "first_name": "Dup",
        "last_name": "User",
        "email": employee_user.email,
        "password": "Password123!",
        "department": "Engineering",
        "position": "Engineer",
        "hire_date": "2024-05-01",
    }
    response = client.post("/api/auth/register", headers=auth_headers(admin_user), json=payload)
    assert response.status_code == 400

def test_register_validates_payload(client, admin_user, auth_headers):
    response = client.post(
        "/api/auth/register",
        headers=auth_headers(admin_user),
        json={"email": "not-an-email", "password": "short"},
    )
    assert response.status_code == 422
    fields = {error["field"] for error in response.json()["errors"]}
    assert {"email", "password", "employee_code"} <= fields

def test_change_password(client, employee_user, auth_headers):
    headers = auth_headers(employee_user)
    bad = client.put(
        "/api/auth/change-password",
        headers=headers,
        json={"current_password": "nope", "new_password": "NewPassword123!"},
    )
    assert bad.status_code == 400

    ok = client.put(
        "/api/auth/change-password",
        headers=headers,
        json={"current_password": "Password123!", "new_password": "NewPassword123!"},
    )
    assert ok.status_code == 200
    assert _login(client, employee_user.email, "NewPassword123!").status_code == 200

def test_update_profile(client, employee_user, auth_headers):
    response = client.put(
        "/api/auth/profile",
        headers=auth_headers(employee_user),
        json={"position": "Senior Engineer"},
    )
    assert response.status_code == 200
    assert response.json()["position"] == "Senior Engineer"

def test_admin_resets_user_password(client, admin_user, employee_user, auth_headers):
    response = client.put(
        f"/api/auth/reset-user-password/{employee_user.id}",
        headers=auth_headers(admin_user),
        json={"new_password": "ResetPassword123!"},
    )
    assert response.status_code == 200
    assert _login(client, employee_user.email, "ResetPassword123!").status_code == 200

    inbox = client.get("/api/notifications", headers=auth_headers(employee_user)).json()
    assert inbox["notifications"][0]["title"] == "Password Reset"
