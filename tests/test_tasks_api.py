"""HTTP-level lifecycle tests for /tasks and /projects."""
import pytest

from app.models.models import Notification, Project


def _create_project(client, headers, admin):
    resp = client.post(
        "/projects",
        json={"name": "Launch", "description": "Q1 launch", "startDate": "2025-01-01T00:00:00Z", "endDate": "2025-06-01T00:00:00Z"},
        headers=headers(admin),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["project"]


def _create_task(client, headers, admin, project_id, assignee):
    resp = client.post(
        "/tasks",
        json={
            "title": "Prepare deck",
            "project": project_id,
            "assignedTo": str(assignee.id),
            "dueDate": "2025-02-01T00:00:00Z",
            "estimatedHours": 4,
        },
        headers=headers(admin),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["task"]


def _types_for(db, user):
    return [n.type for n in db.query(Notification).filter(Notification.user_id == user.id).all()]


class TestLifecycleScenario:
    def test_end_to_end(self, client, headers, db_session, admin, employee, make_user):
        # A: new project with one open task has zero progress
        project = _create_project(client, headers, admin)
        task = _create_task(client, headers, admin, project["id"], employee)
        assert task["status"] == "todo"
        resp = client.get(f"/projects/{project['id']}", headers=headers(admin))
        assert resp.json()["project"]["progress"] == 0

        # B: assignee accepts, creator hears about it
        resp = client.patch(f"/tasks/{task['id']}/accept", headers=headers(employee))
        assert resp.status_code == 200
        body = resp.json()["task"]
        assert body["isAccepted"] is True
        assert body["acceptedAt"] is not None
        assert "TASK_ACCEPTED" in _types_for(db_session, admin)

        # C: completion stamps completedAt and lifts progress to 100
        resp = client.patch(f"/tasks/{task['id']}/status", json={"status": "completed"}, headers=headers(employee))
        assert resp.status_code == 200
        assert resp.json()["task"]["completedAt"] is not None
        resp = client.get(f"/projects/{project['id']}", headers=headers(admin))
        assert resp.json()["project"]["progress"] == 100
        assert "TASK_COMPLETED" in _types_for(db_session, admin)

        # D: the creator is not the assignee
        resp = client.patch(f"/tasks/{task['id']}/status", json={"status": "review"}, headers=headers(admin))
        assert resp.status_code == 403
        assert resp.json() == {"message": "Only assigned user can update task status"}

        # E: a mention notifies exactly the named user
        alice = make_user("Alice")
        resp = client.post(f"/tasks/{task['id']}/comments", json={"text": "Thanks @Alice"}, headers=headers(employee))
        assert resp.status_code == 201
        assert _types_for(db_session, alice).count("COMMENT_MENTION") == 1


class TestTaskEndpoints:
    def test_accept_twice_is_400(self, client, headers, task, employee):
        first = client.patch(f"/tasks/{task.id}/accept", headers=headers(employee)).json()["task"]["acceptedAt"]
        resp = client.patch(f"/tasks/{task.id}/accept", headers=headers(employee))
        assert resp.status_code == 400
        assert resp.json()["message"] == "Task already accepted"
        again = client.get(f"/tasks/{task.id}", headers=headers(employee)).json()["task"]["acceptedAt"]
        assert again == first

    def test_invalid_status_lists_allowed_values(self, client, headers, task, employee):
        resp = client.patch(f"/tasks/{task.id}/status", json={"status": "blocked"}, headers=headers(employee))
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "status"

    def test_put_cannot_change_status(self, client, headers, task, admin):
        resp = client.put(f"/tasks/{task.id}", json={"status": "completed"}, headers=headers(admin))
        assert resp.status_code == 400
        assert resp.json()["message"] == "Validation error"

    def test_put_updates_fields(self, client, headers, task, employee):
        resp = client.put(f"/tasks/{task.id}", json={"title": "Prepare final deck", "priority": "high"}, headers=headers(employee))
        assert resp.status_code == 200
        body = resp.json()["task"]
        assert body["title"] == "Prepare final deck"
        assert body["priority"] == "high"

    def test_log_time(self, client, headers, task, employee, admin):
        resp = client.patch(f"/tasks/{task.id}/time", json={"hoursToAdd": 2.5}, headers=headers(employee))
        assert resp.status_code == 200
        assert resp.json()["task"]["actualHours"] == 2.5
        assert client.patch(f"/tasks/{task.id}/time", json={"hoursToAdd": 1}, headers=headers(admin)).status_code == 403

    @pytest.mark.parametrize("raw", ['{"hoursToAdd": "inf"}', '{"hoursToAdd": NaN}', '{"hoursToAdd": Infinity}'])
    def test_log_time_rejects_non_finite_hours(self, client, headers, db_session, task, employee, raw):
        h = {**headers(employee), "Content-Type": "application/json"}
        resp = client.patch(f"/tasks/{task.id}/time", content=raw, headers=h)
        assert resp.status_code == 400
        db_session.refresh(task)
        assert task.actual_hours == 0
        assert client.get(f"/tasks/{task.id}", headers=headers(employee)).status_code == 200

    def test_put_rejects_non_finite_hours(self, client, headers, task, employee):
        h = {**headers(employee), "Content-Type": "application/json"}
        resp = client.put(f"/tasks/{task.id}", content='{"estimatedHours": "inf"}', headers=h)
        assert resp.status_code == 400
        resp = client.put(f"/tasks/{task.id}", content='{"actualHours": NaN}', headers=h)
        assert resp.status_code == 400

    def test_time_session(self, client, headers, task, employee):
        resp = client.post(
            f"/tasks/{task.id}/time-sessions",
            json={"startTime": "2025-03-01T09:00:00Z", "endTime": "2025-03-01T11:15:00Z"},
            headers=headers(employee),
        )
        assert resp.status_code == 201
        assert resp.json()["session"]["duration"] == 2.25

    def test_checklist_endpoints(self, client, headers, task, employee):
        resp = client.patch(
            f"/tasks/{task.id}/checklist",
            json={"checklistItems": [{"text": "Outline", "completed": True}, {"text": "Slides"}]},
            headers=headers(employee),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["checklistProgress"] == 50
        second = body["checklist"][1]["id"]

        resp = client.patch(f"/tasks/{task.id}/checklist/{second}", json={"completed": True}, headers=headers(employee))
        assert resp.json()["checklistProgress"] == 100

        resp = client.post(f"/tasks/{task.id}/checklist", json={"text": "Rehearse"}, headers=headers(employee))
        assert resp.status_code == 201
        assert resp.json()["checklistProgress"] == 67

        ids = [i["id"] for i in client.get(f"/tasks/{task.id}", headers=headers(employee)).json()["task"]["checklist"]]
        resp = client.put(f"/tasks/{task.id}/checklist/order", json={"itemIds": list(reversed(ids))}, headers=headers(employee))
        assert [i["text"] for i in resp.json()["checklist"]] == ["Rehearse", "Slides", "Outline"]

        resp = client.delete(f"/tasks/{task.id}/checklist/{ids[0]}", headers=headers(employee))
        assert resp.json()["checklistProgress"] == 50

    def test_listing_scoped_for_employees(self, client, headers, make_task, project, admin, employee, other_employee):
        make_task(project, admin, employee, title="Mine")
        make_task(project, admin, other_employee, title="Theirs")
        resp = client.get("/tasks", headers=headers(employee))
        assert [t["title"] for t in resp.json()["tasks"]] == ["Mine"]
        resp = client.get("/tasks", params={"search": "the"}, headers=headers(admin))
        assert resp.json()["total"] == 1

    def test_stranger_cannot_view(self, client, headers, task, other_employee):
        assert client.get(f"/tasks/{task.id}", headers=headers(other_employee)).status_code == 403

    def test_malformed_and_missing_ids(self, client, headers, admin):
        resp = client.get("/tasks/not-a-uuid", headers=headers(admin))
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid task id"
        resp = client.get("/tasks/00000000-0000-0000-0000-000000000000", headers=headers(admin))
        assert resp.status_code == 404

    def test_delete_task(self, client, headers, db_session, task, admin, employee, project):
        assert client.delete(f"/tasks/{task.id}", headers=headers(employee)).status_code == 403
        resp = client.delete(f"/tasks/{task.id}", headers=headers(admin))
        assert resp.status_code == 200
        db_session.expire_all()
        assert db_session.get(Project, project.id).tasks == []

    def test_activity_log(self, client, headers, task, employee):
        client.patch(f"/tasks/{task.id}/status", json={"status": "in-progress"}, headers=headers(employee))
        actions = [a["action"] for a in client.get(f"/tasks/{task.id}/activity", headers=headers(employee)).json()["activityLog"]]
        assert actions == ["created", "status_changed"]

    def test_requires_token(self, client, task):
        resp = client.get(f"/tasks/{task.id}")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Access token required"
