"""
Task lifecycle: creation, the status state machine, acceptance, the
checklist and time ledger, and project progress recomputation.

Functions flush but never commit; the calling route owns the transaction so
the task write, the activity entry and the progress recomputation land
together.
"""
import math
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import (
    ChecklistItem,
    Event,
    Project,
    Task,
    TaskActivity,
    TaskComment,
    TASK_COMPLETED,
    TASK_STATUSES,
    TimeSession,
    User,
    as_utc,
    percent,
    utcnow,
)
from . import notifications
from .permissions import (
    ProjectAction,
    TaskAction,
    check_project,
    check_task,
    check_task_update_fields,
    ensure,
)


logger = structlog.get_logger(__name__)

CHECKLIST_TEXT_MAX = 200
TIME_SESSION_DESCRIPTION_MAX = 200
REQUIRED_TASK_FIELDS = frozenset({"title", "priority", "estimated_hours", "actual_hours", "tags"})


def parse_id(raw: Any, label: str = "id") -> uuid.UUID:
    if isinstance(raw, uuid.UUID):
        return raw
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label}")


def get_task(db: Session, task_id: Any) -> Task:
    task = db.query(Task).filter(Task.id == parse_id(task_id, "task id")).first()
    if not task:
        raise NotFoundError("Task not found")
    return task


def get_active_user(db: Session, user_id: Any, label: str = "Assigned user") -> User:
    user = db.query(User).filter(User.id == parse_id(user_id, "user id")).first()
    if not user or not user.is_active:
        raise NotFoundError(f"{label} not found or inactive")
    return user


def log_activity(task: Task, action: str, actor: Optional[User], details: Optional[Dict[str, Any]] = None) -> TaskActivity:
    entry = TaskActivity(action=action, user_id=actor.id if actor else None, details=details or {}, timestamp=utcnow())
    task.activity_log.append(entry)
    return entry


def recompute_project_progress(db: Session, project_id: Optional[uuid.UUID]) -> Optional[int]:
    """Overwrite project.progress from the current task states."""
    if project_id is None:
        return None
    db.flush()
    total, completed = (
        db.query(
            func.count(Task.id),
            func.coalesce(func.sum(case((Task.status == TASK_COMPLETED, 1), else_=0)), 0),
        )
        .filter(Task.project_id == project_id)
        .one()
    )
    project = db.get(Project, project_id)
    if project is None:
        return None
    project.progress = percent(int(completed or 0), int(total or 0))
    db.flush()
    return project.progress


def _apply_completed_at(task: Task, new_status: str) -> None:
    if new_status == TASK_COMPLETED:
        if task.completed_at is None:
            task.completed_at = utcnow()
    else:
        task.completed_at = None


def create_task(
    db: Session,
    actor: User,
    *,
    title: str,
    project_id: Any,
    assigned_to_id: Any,
    description: Optional[str] = None,
    due_date: Optional[datetime] = None,
    priority: str = "medium",
    estimated_hours: Optional[float] = None,
    tags: Optional[List[str]] = None,
) -> Task:
    project = db.query(Project).filter(Project.id == parse_id(project_id, "project id")).first()
    if not project:
        raise NotFoundError("Project not found")
    ensure(check_project(actor, project, ProjectAction.CREATE_TASK))
    assignee = get_active_user(db, assigned_to_id)

    task = Task(
        title=title.strip(),
        description=(description or "").strip() or None,
        status="todo",
        priority=priority or "medium",
        assigned_to=assignee,
        created_by=actor,
        due_date=due_date,
        estimated_hours=estimated_hours or 0,
        actual_hours=0,
        tags=tags or [],
    )
    project.tasks.append(task)
    log_activity(task, "created", actor, {"title": task.title})
    db.flush()
    recompute_project_progress(db, project.id)
    if assignee.id != actor.id:
        notifications.notify_task_assigned(db, task, actor)
    logger.info("task_created", task_id=str(task.id), project_id=str(project.id), assignee=str(assignee.id))
    return task


def transition_status(db: Session, task: Task, actor: User, new_status: str) -> Task:
    if new_status not in TASK_STATUSES:
        raise ValidationError(
            "Validation error",
            errors=[{"field": "status", "message": f"Status must be one of: {', '.join(TASK_STATUSES)}"}],
        )
    ensure(check_task(actor, task, TaskAction.TRANSITION))

    old_status = task.status
    task.status = new_status
    _apply_completed_at(task, new_status)
    log_activity(task, "status_changed", actor, {"from": old_status, "to": new_status})
    recompute_project_progress(db, task.project_id)

    if new_status == TASK_COMPLETED and old_status != TASK_COMPLETED and task.created_by_id != actor.id:
        notifications.notify_task_completed(db, task, actor)
    logger.info("task_status_changed", task_id=str(task.id), old=old_status, new=new_status)
    return task


def accept_task(db: Session, task: Task, actor: User) -> Task:
    ensure(check_task(actor, task, TaskAction.ACCEPT))
    if task.is_accepted:
        raise ConflictError("Task already accepted")
    task.is_accepted = True
    task.accepted_at = utcnow()
    log_activity(task, "accepted", actor, {"acceptedAt": task.accepted_at.isoformat()})
    db.flush()
    if task.created_by_id != actor.id:
        notifications.notify_task_accepted(db, task, actor)
    return task


def log_time(db: Session, task: Task, actor: User, hours: float) -> Task:
    ensure(check_task(actor, task, TaskAction.LOG_TIME))
    if hours is None or not math.isfinite(hours) or hours <= 0:
        raise ValidationError("Hours must be a positive number greater than 0")
    if task.status == TASK_COMPLETED:
        raise ValidationError("Cannot track time on completed tasks")
    task.actual_hours = round((task.actual_hours or 0) + float(hours), 2)
    log_activity(task, "time_updated", actor, {"hoursAdded": float(hours), "totalHours": task.actual_hours})
    db.flush()
    return task


def add_time_session(
    db: Session,
    task: Task,
    actor: User,
    start_time: datetime,
    end_time: datetime,
    description: Optional[str] = None,
) -> TimeSession:
    ensure(check_task(actor, task, TaskAction.LOG_TIME))
    if task.status == TASK_COMPLETED:
        raise ValidationError("Cannot track time on completed tasks")
    start, end = as_utc(start_time), as_utc(end_time)
    if end <= start:
        raise ValidationError("Session end time must be after start time")
    if description and len(description) > TIME_SESSION_DESCRIPTION_MAX:
        raise ValidationError("Session description cannot exceed 200 characters")
    duration = round((end - start).total_seconds() / 3600, 2)
    session = TimeSession(user_id=actor.id, start_time=start, end_time=end, duration=duration, description=description)
    task.time_sessions.append(session)
    task.actual_hours = round((task.actual_hours or 0) + duration, 2)
    log_activity(task, "time_updated", actor, {"hoursAdded": duration, "totalHours": task.actual_hours, "session": True})
    db.flush()
    return session


def _clean_item_text(text: Optional[str]) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationError("Checklist item text is required")
    if len(cleaned) > CHECKLIST_TEXT_MAX:
        raise ValidationError("Checklist item cannot exceed 200 characters")
    return cleaned


def _set_completed(item: ChecklistItem, completed: bool, actor: User) -> None:
    """Stamp on a false->true flip, clear on true->false, keep otherwise."""
    completed = bool(completed)
    if completed and not item.completed:
        item.completed_by_id = actor.id
        item.completed_at = utcnow()
    elif not completed:
        item.completed_by_id = None
        item.completed_at = None
    item.completed = completed


def replace_checklist(db: Session, task: Task, actor: User, items: Iterable[Dict[str, Any]]) -> List[ChecklistItem]:
    """
    Full-list replace. Items carrying a known id keep it and keep their
    completion stamp when the flag did not change; items without one are
    created; existing items missing from the list are removed.
    """
    ensure(check_task(actor, task, TaskAction.EDIT_CHECKLIST))
    existing = {item.id: item for item in task.checklist}
    result: List[ChecklistItem] = []
    seen = set()
    for position, payload in enumerate(items):
        text = _clean_item_text(payload.get("text"))
        raw_id = payload.get("id")
        item = None
        if raw_id:
            try:
                item = existing.get(uuid.UUID(str(raw_id)))
            except ValueError:
                item = None
        if item is None or item.id in seen:
            item = ChecklistItem(text=text, completed=False, created_by_id=actor.id, created_at=utcnow())
        item.text = text
        item.order = position
        _set_completed(item, payload.get("completed", False), actor)
        if item.id is not None:
            seen.add(item.id)
        result.append(item)
    task.checklist[:] = result
    log_activity(task, "checklist_updated", actor, {"items": len(result), "progress": task.checklist_progress})
    db.flush()
    return list(task.checklist)


def _get_item(task: Task, item_id: Any) -> ChecklistItem:
    wanted = parse_id(item_id, "checklist item id")
    for item in task.checklist:
        if item.id == wanted:
            return item
    raise NotFoundError("Checklist item not found")


def add_checklist_item(db: Session, task: Task, actor: User, text: str, completed: bool = False) -> ChecklistItem:
    ensure(check_task(actor, task, TaskAction.EDIT_CHECKLIST))
    next_order = max((i.order for i in task.checklist), default=-1) + 1
    item = ChecklistItem(text=_clean_item_text(text), completed=False, created_by_id=actor.id, created_at=utcnow(), order=next_order)
    _set_completed(item, completed, actor)
    task.checklist.append(item)
    log_activity(task, "checklist_updated", actor, {"added": item.text})
    db.flush()
    return item


def update_checklist_item(
    db: Session,
    task: Task,
    actor: User,
    item_id: Any,
    text: Optional[str] = None,
    completed: Optional[bool] = None,
) -> ChecklistItem:
    ensure(check_task(actor, task, TaskAction.EDIT_CHECKLIST))
    item = _get_item(task, item_id)
    if text is not None:
        item.text = _clean_item_text(text)
    if completed is not None:
        _set_completed(item, completed, actor)
    log_activity(task, "checklist_updated", actor, {"item": str(item.id), "completed": item.completed})
    db.flush()
    return item


def remove_checklist_item(db: Session, task: Task, actor: User, item_id: Any) -> None:
    ensure(check_task(actor, task, TaskAction.EDIT_CHECKLIST))
    item = _get_item(task, item_id)
    task.checklist.remove(item)
    for position, remaining in enumerate(task.checklist):
        remaining.order = position
    log_activity(task, "checklist_updated", actor, {"removed": item.text})
    db.flush()


def reorder_checklist(db: Session, task: Task, actor: User, item_ids: List[Any]) -> List[ChecklistItem]:
    ensure(check_task(actor, task, TaskAction.EDIT_CHECKLIST))
    by_id = {item.id: item for item in task.checklist}
    wanted = [parse_id(i, "checklist item id") for i in item_ids]
    if len(wanted) != len(by_id) or set(wanted) != set(by_id):
        raise ValidationError("Item ids must list every checklist item exactly once")
    for position, item_id in enumerate(wanted):
        by_id[item_id].order = position
    task.checklist.sort(key=lambda i: i.order)
    log_activity(task, "checklist_updated", actor, {"reordered": True})
    db.flush()
    return list(task.checklist)


def add_comment(db: Session, task: Task, actor: User, text: str) -> TaskComment:
    ensure(check_task(actor, task, TaskAction.COMMENT))
    cleaned = (text or "").strip()
    if not cleaned or len(cleaned) > 500:
        raise ValidationError("Comment must be 1-500 characters")
    mentioned = notifications.resolve_mentions(db, cleaned, author_id=actor.id)
    comment = TaskComment(user_id=actor.id, text=cleaned, created_at=utcnow())
    comment.mentions = mentioned
    task.comments.append(comment)
    log_activity(task, "commented", actor, {"mentions": [str(u.id) for u in mentioned]})
    db.flush()
    notifications.notify_mentions(db, task, actor, mentioned)
    return comment


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def update_task_fields(db: Session, task: Task, actor: User, changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Generic edit through PUT. Returns the {field: {before, after}} diff.
    Status only moves through transition_status.
    """
    ensure(check_task_update_fields(actor, task, changes.keys()))
    diff: Dict[str, Any] = {}
    old_project_id = task.project_id

    if "project_id" in changes and changes["project_id"] is not None:
        new_project = db.query(Project).filter(Project.id == parse_id(changes["project_id"], "project id")).first()
        if not new_project:
            raise NotFoundError("Project not found")
        if new_project.id != task.project_id:
            ensure(check_project(actor, new_project, ProjectAction.CREATE_TASK))
            diff["project_id"] = {"before": str(task.project_id), "after": str(new_project.id)}
            task.project = new_project

    reassigned_to = None
    if "assigned_to_id" in changes and changes["assigned_to_id"] is not None:
        assignee = get_active_user(db, changes["assigned_to_id"])
        if assignee.id != task.assigned_to_id:
            diff["assigned_to_id"] = {"before": str(task.assigned_to_id), "after": str(assignee.id)}
            task.assigned_to = assignee
            # A new assignee has to accept the task again
            task.is_accepted = False
            task.accepted_at = None
            reassigned_to = assignee

    for field in ("title", "description", "priority", "due_date", "estimated_hours", "actual_hours", "tags"):
        if field not in changes:
            continue
        value = changes[field]
        if value is None and field in REQUIRED_TASK_FIELDS:
            continue
        if field in ("title", "description") and isinstance(value, str):
            value = value.strip()
        before = getattr(task, field)
        if _plain(before) != _plain(value):
            diff[field] = {"before": _plain(before), "after": _plain(value)}
            setattr(task, field, value)

    if diff:
        log_activity(task, "updated", actor, {"fields": sorted(diff)})
    if reassigned_to is not None:
        log_activity(task, "assigned", actor, {"to": str(reassigned_to.id)})
    db.flush()
    if task.project_id != old_project_id:
        recompute_project_progress(db, old_project_id)
        recompute_project_progress(db, task.project_id)
    if reassigned_to is not None and reassigned_to.id != actor.id:
        notifications.notify_task_assigned(db, task, actor)
    return diff


def delete_task(db: Session, task: Task, actor: User) -> None:
    ensure(check_task(actor, task, TaskAction.DELETE))
    project = task.project
    # Detach calendar events before the row goes
    db.query(Event).filter(Event.task_id == task.id).update({Event.task_id: None}, synchronize_session=False)
    if project is not None:
        project.tasks.remove(task)
    else:
        db.delete(task)
    db.flush()
    if project is not None:
        recompute_project_progress(db, project.id)
