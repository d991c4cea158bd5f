import pytest
from app.services.notification import NotificationService

@pytest.fixture
def inbox(db_session, employee_user):
    created = NotificationService.notify_many(
        db_session,
        [employee_user.id, employee_user.id, employee_user.id],
        title="Reminder",
        message="Submit your timesheet",
    )
    db_session.commit()
    return created

def test_list_and_unread_count(client, employee_user, auth_headers, inbox):
    headers = auth_headers(employee_user)
    data = client.get("/api/notifications", headers=headers).json()
    assert data["pagination"]["total_items"] == 3
    assert all(n["is_read"] is False for n in data["notifications"])

    assert client.get("/api/notifications/unread/count", headers=headers).json() == {"unread_count": 3}

def test_mark_one_as_read(client, employee_user, auth_headers, inbox):
    headers = auth_headers(employee_user)
    response = client.put(f"/api/notifications/{inbox[0].id}/read", headers=headers)
    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert response.json()["read_at"] is not None

    unread = client.get("/api/notifications", headers=headers, params={"unread_only": True}).json()
    assert unread["pagination"]["total_items"] == 2

def test_mark_all_as_read(client, employee_user, auth_headers, inbox):
    headers = auth_headers(employee_user)
    response = client.put("/api/notifications/read-all", headers=headers)
    assert response.json()["updated"] == 3
    assert client.get("/api/notifications/unread/count", headers=headers).json()["unread_count"] == 0

def test_delete_notification(client, employee_user, auth_headers, inbox):
    headers = auth_headers(employee_user)
    assert client.delete(f"/api/notifications/{inbox[0].id}", headers=headers).status_code == 200
    assert client.get(f"/api/notifications/{inbox[0].id}", headers=headers).status_code == 404

def test_cannot_touch_someone_elses_notification(client, manager_user, auth_headers, inbox):
    headers = auth_headers(manager_user)
    assert client.get(f"/api/notifications/{inbox[0].id}", headers=headers).status_code == 404
    assert client.put(f"/api/notifications/{inbox[0].id}/read", headers=headers).status_code == 404
    assert client.delete(f"/api/notifications/{inbox[0].id}", headers=headers).status_code == 404

def test_leave_submission_lands_in_manager_inbox(client, employee_user, manager_user, auth_headers, leave_types):
    from datetime import date, timedelta
    start = date.today() + timedelta(days=7)
    client.post(
        "/api/leaves",
        headers=auth_headers(employee_user),
        json={
            "leave_type_id": leave_types["Annual Leave"].id,
            "start_date": start.isoformat(),
            "end_date": start.isoformat(),
            "reason": "Moving to a new apartment",
        },
    )
    data = client.get("/api/notifications", headers=auth_headers(manager_user)).json()
    assert data["notifications"][0]["title"] == "New Leave Request"
    assert data["notifications"][0]["related_type"] == "leave"
