from app.models.models import AuditLog, Notification, User


def test_admin_routes_require_admin(client, headers, employee):
    assert client.get("/admin/dashboard-stats", headers=headers(employee)).status_code == 403
    assert client.get("/users", headers=headers(employee)).status_code == 403
    assert client.get("/admin/tenants", headers=headers(employee)).status_code == 403


def test_create_user_and_duplicate(client, headers, db_session, admin):
    payload = {"name": "Dan Dev", "email": "dan@tasknest.io", "password": "secret123", "department": "R&D"}
    resp = client.post("/admin/create-user", json=payload, headers=headers(admin))
    assert resp.status_code == 201
    user_id = resp.json()["user"]["id"]
    welcome = db_session.query(Notification).filter(Notification.type == "USER_INVITED").one()
    assert str(welcome.user_id) == user_id

    dup = client.post("/admin/create-user", json={**payload, "email": "DAN@tasknest.io"}, headers=headers(admin))
    assert dup.status_code == 400
    assert dup.json()["message"] == "User with this email already exists"


def test_dashboard_stats(client, headers, db_session, admin, employee, other_employee, task):
    other_employee.status = "inactive"
    db_session.commit()
    stats = client.get("/admin/dashboard-stats", headers=headers(admin)).json()
    assert stats["users"] == {"total": 2, "admins": 1, "employees": 1, "inactive": 1}
    assert stats["tasks"]["total"] == 1
    assert stats["tasks"]["byStatus"] == {"todo": 1}
    assert stats["projects"]["total"] == 1


def test_audit_logs_filter(client, headers, admin, employee, task):
    client.put(f"/tasks/{task.id}", json={"title": "Write the report"}, headers=headers(admin))
    resp = client.get(
        "/admin/audit-logs", params={"resource": "Task", "resourceId": str(task.id)}, headers=headers(admin)
    )
    assert resp.status_code == 200
    logs = resp.json()["logs"]
    assert [entry["action"] for entry in logs] == ["TASK_UPDATE"]
    assert logs[0]["details"]["changes"]["title"] == {"before": "Write report", "after": "Write the report"}


def test_list_and_get_users(client, headers, db_session, admin, employee, other_employee, task):
    other_employee.status = "deleted"
    db_session.commit()
    listed = client.get("/users", headers=headers(admin)).json()
    assert listed["total"] == 2

    detail = client.get(f"/users/{employee.id}", headers=headers(employee))
    assert detail.status_code == 200
    assert [t["title"] for t in detail.json()["user"]["assignedTasks"]] == ["Write report"]

    denied = client.get(f"/users/{admin.id}", headers=headers(employee))
    assert denied.status_code == 403
    assert denied.json()["message"] == "Access denied"


def test_role_change_notifies(client, headers, db_session, admin, employee):
    resp = client.put(f"/users/{employee.id}", json={"role": "admin"}, headers=headers(admin))
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "admin"
    note = db_session.query(Notification).filter(Notification.user_id == employee.id).one()
    assert note.type == "ROLE_CHANGED"
    assert note.data == {"type": "user", "oldRole": "employee", "newRole": "admin"}
    assert db_session.query(AuditLog).filter(AuditLog.action == "USER_UPDATE").count() == 1


def test_update_user_email_conflict(client, headers, admin, employee, other_employee):
    resp = client.put(f"/users/{employee.id}", json={"email": other_employee.email}, headers=headers(admin))
    assert resp.status_code == 400


def test_deactivate_and_activate(client, headers, db_session, admin, employee):
    assert client.patch(f"/users/{admin.id}/deactivate", headers=headers(admin)).status_code == 400

    assert client.patch(f"/users/{employee.id}/deactivate", headers=headers(admin)).status_code == 200
    db_session.refresh(employee)
    assert employee.status == "inactive"
    assert client.get("/auth/profile", headers=headers(employee)).status_code == 401

    assert client.patch(f"/users/{employee.id}/activate", headers=headers(admin)).status_code == 200
    db_session.refresh(employee)
    assert employee.status == "active"

    employee.status = "deleted"
    db_session.commit()
    assert client.patch(f"/users/{employee.id}/activate", headers=headers(admin)).status_code == 400


def test_tenant_lifecycle(client, headers, db_session, admin):
    created = client.post(
        "/admin/tenants",
        json={"name": "Tara Tenant", "email": "tara@tasknest.io", "password": "secret123", "roomNumber": "4B"},
        headers=headers(admin),
    )
    assert created.status_code == 201
    tenant = created.json()["tenant"]
    assert tenant["role"] == "employee"
    assert tenant["department"] == "General"
    assert tenant["roomNumber"] == "4B"

    listed = client.get("/admin/tenants", params={"search": "tara"}, headers=headers(admin)).json()
    assert listed["success"] is True
    assert [t["id"] for t in listed["tenants"]] == [tenant["id"]]

    updated = client.put(f"/admin/tenants/{tenant['id']}", json={"position": "Resident"}, headers=headers(admin))
    assert updated.json()["tenant"]["position"] == "Resident"

    stats = client.get("/admin/tenants/stats", headers=headers(admin)).json()["stats"]
    assert stats["total"] == 1
    assert stats["active"] == 1
    assert stats["departments"] == [{"department": "General", "count": 1}]

    deleted = client.delete(f"/admin/tenants/{tenant['id']}", headers=headers(admin))
    assert deleted.status_code == 200
    assert client.get(f"/admin/tenants/{tenant['id']}", headers=headers(admin)).status_code == 404
    # The address is free again
    again = client.post(
        "/admin/tenants",
        json={"name": "Tara Again", "email": "tara@tasknest.io", "password": "secret123"},
        headers=headers(admin),
    )
    assert again.status_code == 201


def test_admin_is_not_a_tenant(client, headers, admin):
    resp = client.get(f"/admin/tenants/{admin.id}", headers=headers(admin))
    assert resp.status_code == 404
    assert resp.json()["message"] == "Tenant not found"
    assert client.delete(f"/admin/tenants/{admin.id}", headers=headers(admin)).status_code == 404
