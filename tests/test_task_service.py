from datetime import datetime, timedelta, timezone

import pytest

from app.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.models import Notification, Project, Task, percent
from app.services import task_service


def _notifications(db, user, type_):
    return db.query(Notification).filter(Notification.user_id == user.id, Notification.type == type_).all()


class TestPercent:
    def test_rounds_half_up(self):
        assert percent(1, 3) == 33
        assert percent(2, 3) == 67
        assert percent(1, 8) == 13
        assert percent(1, 2) == 50

    def test_zero_total(self):
        assert percent(0, 0) == 0


class TestCreateTask:
    def test_create_sets_defaults_and_notifies_assignee(self, db_session, task, employee, project):
        assert task.status == "todo"
        assert task.completed_at is None
        assert task.is_accepted is False
        assert task.activity_log[0].action == "created"
        assert project.progress == 0
        assert len(_notifications(db_session, employee, "TASK_ASSIGNED")) == 1

    def test_employee_outside_management_cannot_create(self, db_session, project, employee, other_employee):
        with pytest.raises(AuthorizationError) as exc:
            task_service.create_task(
                db_session, employee, title="Sneaky", project_id=project.id, assigned_to_id=other_employee.id
            )
        assert exc.value.message == "Only admin or project manager can create tasks in this project"

    def test_inactive_assignee_rejected(self, db_session, project, admin, other_employee):
        other_employee.status = "inactive"
        db_session.commit()
        with pytest.raises(NotFoundError):
            task_service.create_task(
                db_session, admin, title="Orphan", project_id=project.id, assigned_to_id=other_employee.id
            )

    def test_bad_project_id(self, db_session, admin, employee):
        with pytest.raises(ValidationError):
            task_service.create_task(db_session, admin, title="Lost", project_id="nope", assigned_to_id=employee.id)


class TestStatusMachine:
    def test_completed_at_follows_status_both_ways(self, db_session, task, employee):
        task_service.transition_status(db_session, task, employee, "completed")
        assert task.completed_at is not None
        task_service.transition_status(db_session, task, employee, "in-progress")
        assert task.completed_at is None
        task_service.transition_status(db_session, task, employee, "completed")
        assert task.completed_at is not None
        task_service.transition_status(db_session, task, employee, "todo")
        assert task.completed_at is None

    def test_completed_to_completed_keeps_timestamp(self, db_session, task, employee):
        task_service.transition_status(db_session, task, employee, "completed")
        first = task.completed_at
        task_service.transition_status(db_session, task, employee, "completed")
        assert task.completed_at == first

    def test_unknown_status_rejected(self, db_session, task, employee):
        with pytest.raises(ValidationError) as exc:
            task_service.transition_status(db_session, task, employee, "blocked")
        assert exc.value.errors[0]["field"] == "status"
        assert task.status == "todo"

    def test_non_assignee_rejected(self, db_session, task, admin):
        with pytest.raises(AuthorizationError):
            task_service.transition_status(db_session, task, admin, "review")
        assert task.status == "todo"

    def test_completion_notifies_creator(self, db_session, task, employee, admin):
        task_service.transition_status(db_session, task, employee, "completed")
        db_session.commit()
        assert len(_notifications(db_session, admin, "TASK_COMPLETED")) == 1

    def test_transition_is_logged(self, db_session, task, employee):
        task_service.transition_status(db_session, task, employee, "review")
        entry = task.activity_log[-1]
        assert entry.action == "status_changed"
        assert entry.details == {"from": "todo", "to": "review"}


class TestProjectProgress:
    def test_progress_tracks_status_changes(self, db_session, make_task, project, admin, employee):
        tasks = [make_task(project, admin, employee, title=f"Task {i}") for i in range(3)]
        task_service.transition_status(db_session, tasks[0], employee, "completed")
        db_session.commit()
        assert db_session.get(Project, project.id).progress == 33
        task_service.transition_status(db_session, tasks[1], employee, "completed")
        db_session.commit()
        assert db_session.get(Project, project.id).progress == 67
        task_service.transition_status(db_session, tasks[1], employee, "review")
        db_session.commit()
        assert db_session.get(Project, project.id).progress == 33

    def test_deleting_last_task_resets_progress(self, db_session, task, employee, admin, project):
        task_service.transition_status(db_session, task, employee, "completed")
        db_session.commit()
        assert project.progress == 100
        task_service.delete_task(db_session, task, admin)
        db_session.commit()
        db_session.refresh(project)
        assert project.progress == 0
        assert project.tasks == []
        assert db_session.query(Task).count() == 0
        db_session.refresh(employee)
        assert employee.assigned_tasks == []

    def test_moving_task_recomputes_both_projects(self, db_session, task, employee, admin, project, make_project):
        other = make_project(admin, name="Gemini")
        task_service.transition_status(db_session, task, employee, "completed")
        task_service.update_task_fields(db_session, task, admin, {"project_id": other.id})
        db_session.commit()
        db_session.refresh(project)
        db_session.refresh(other)
        assert project.progress == 0
        assert other.progress == 100


class TestAcceptance:
    def test_accept_once(self, db_session, task, employee, admin):
        task_service.accept_task(db_session, task, employee)
        db_session.commit()
        accepted_at = task.accepted_at
        assert task.is_accepted is True
        assert len(_notifications(db_session, admin, "TASK_ACCEPTED")) == 1
        with pytest.raises(ConflictError) as exc:
            task_service.accept_task(db_session, task, employee)
        assert exc.value.status_code == 400
        assert task.accepted_at == accepted_at

    def test_reassignment_resets_acceptance(self, db_session, task, employee, other_employee, admin):
        task_service.accept_task(db_session, task, employee)
        diff = task_service.update_task_fields(db_session, task, admin, {"assigned_to_id": other_employee.id})
        db_session.commit()
        assert "assigned_to_id" in diff
        assert task.is_accepted is False
        assert task.accepted_at is None
        assert len(_notifications(db_session, other_employee, "TASK_ASSIGNED")) == 1


class TestTimeLedger:
    def test_log_time_accumulates(self, db_session, task, employee):
        task_service.log_time(db_session, task, employee, 1.5)
        task_service.log_time(db_session, task, employee, 2.25)
        assert task.actual_hours == 3.75

    @pytest.mark.parametrize("hours", [0, -1, float("inf"), float("nan")])
    def test_non_positive_or_non_finite_rejected(self, db_session, task, employee, hours):
        with pytest.raises(ValidationError):
            task_service.log_time(db_session, task, employee, hours)

    def test_completed_task_rejects_time(self, db_session, task, employee):
        task_service.transition_status(db_session, task, employee, "completed")
        with pytest.raises(ValidationError):
            task_service.log_time(db_session, task, employee, 1)

    def test_time_session_adds_duration(self, db_session, task, employee):
        start = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
        session = task_service.add_time_session(db_session, task, employee, start, start + timedelta(minutes=90))
        assert session.duration == 1.5
        assert task.actual_hours == 1.5
        assert task.total_session_time == 1.5

    def test_time_session_end_before_start(self, db_session, task, employee):
        start = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            task_service.add_time_session(db_session, task, employee, start, start)

    def test_creator_may_only_touch_actual_hours(self, db_session, make_task, project, admin, employee, other_employee):
        project.manager_id = employee.id
        db_session.commit()
        task = make_task(project, employee, other_employee)
        task_service.update_task_fields(db_session, task, employee, {"actual_hours": 4})
        assert task.actual_hours == 4
        with pytest.raises(AuthorizationError):
            task_service.update_task_fields(db_session, task, employee, {"title": "Renamed"})
