from app.models.models import Event, Project, Task


def _project_body(**overrides):
    body = {
        "name": "Atlas",
        "description": "Warehouse rollout",
        "startDate": "2025-01-01T00:00:00Z",
        "endDate": "2025-03-01T00:00:00Z",
        "priority": "high",
    }
    body.update(overrides)
    return body


def test_create_requires_admin(client, headers, employee):
    resp = client.post("/projects", json=_project_body(), headers=headers(employee))
    assert resp.status_code == 403


def test_end_before_start_rejected(client, headers, admin):
    resp = client.post("/projects", json=_project_body(endDate="2024-12-01T00:00:00Z"), headers=headers(admin))
    assert resp.status_code == 400
    assert resp.json()["message"] == "Validation error"


def test_team_members_must_be_active(client, headers, admin, employee, db_session):
    employee.status = "inactive"
    db_session.commit()
    resp = client.post("/projects", json=_project_body(team=[str(employee.id)]), headers=headers(admin))
    assert resp.status_code == 400
    assert resp.json()["message"] == "Some team members are invalid or inactive"


def test_create_and_read(client, headers, admin, employee):
    resp = client.post("/projects", json=_project_body(team=[str(employee.id)]), headers=headers(admin))
    assert resp.status_code == 201
    project = resp.json()["project"]
    assert project["manager"]["id"] == str(admin.id)
    assert [m["id"] for m in project["team"]] == [str(employee.id)]
    assert project["progress"] == 0

    # Team members can read
    assert client.get(f"/projects/{project['id']}", headers=headers(employee)).status_code == 200


def test_listing_scoped_for_employees(client, headers, make_project, admin, employee, other_employee):
    make_project(admin, name="Visible", team=[employee])
    make_project(admin, name="Hidden", team=[other_employee])
    resp = client.get("/projects", headers=headers(employee))
    assert [p["name"] for p in resp.json()["projects"]] == ["Visible"]
    assert client.get("/projects", headers=headers(admin)).json()["total"] == 2


def test_update_by_manager_only(client, headers, project, employee, admin):
    resp = client.put(f"/projects/{project.id}", json={"status": "active"}, headers=headers(employee))
    assert resp.status_code == 403
    assert resp.json()["message"] == "Only admin or project manager can update this project"
    resp = client.put(f"/projects/{project.id}", json={"status": "active", "tags": ["ops"]}, headers=headers(admin))
    assert resp.status_code == 200
    assert resp.json()["project"]["status"] == "active"
    assert resp.json()["project"]["tags"] == ["ops"]


def test_update_rejects_inverted_dates(client, headers, project, admin):
    resp = client.put(f"/projects/{project.id}", json={"endDate": "2000-01-01T00:00:00Z"}, headers=headers(admin))
    assert resp.status_code == 400
    assert resp.json()["message"] == "End date must be after start date"


def test_update_ignores_null_dates(client, headers, project, admin):
    resp = client.put(f"/projects/{project.id}", json={"startDate": None, "endDate": None}, headers=headers(admin))
    assert resp.status_code == 200
    body = resp.json()["project"]
    assert body["startDate"] is not None
    assert body["endDate"] is not None
    assert client.get(f"/projects/{project.id}", headers=headers(admin)).json()["project"]["startDate"] == body["startDate"]


def test_budget_must_be_finite(client, headers, project, admin):
    h = {**headers(admin), "Content-Type": "application/json"}
    resp = client.put(f"/projects/{project.id}", content='{"budget": Infinity}', headers=h)
    assert resp.status_code == 400


def test_delete_cascades_tasks(client, headers, db_session, make_task, project, admin, employee):
    task = make_task(project, admin, employee)
    event = Event(
        title="Kickoff",
        start_date=project.start_date,
        end_date=project.end_date,
        created_by_id=admin.id,
        project_id=project.id,
        task_id=task.id,
    )
    db_session.add(event)
    db_session.commit()
    event_id = event.id

    resp = client.delete(f"/projects/{project.id}", headers=headers(admin))
    assert resp.status_code == 200
    db_session.expire_all()
    assert db_session.query(Project).count() == 0
    assert db_session.query(Task).count() == 0
    assert admin.created_projects == []
    assert employee.assigned_tasks == []
    kept = db_session.get(Event, event_id)
    assert kept.project_id is None
    assert kept.task_id is None


def test_my_created_tasks(client, headers, make_task, project, admin, employee):
    make_task(project, admin, employee, title="From admin")
    resp = client.get("/projects/mine/tasks", headers=headers(admin))
    assert [t["title"] for t in resp.json()["tasks"]] == ["From admin"]
    assert client.get("/projects/mine/tasks", headers=headers(employee)).json()["total"] == 0
