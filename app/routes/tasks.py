import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Task, User
from ..schemas.tasks import (
    ChecklistItemCreate,
    ChecklistItemUpdate,
    ChecklistReorder,
    ChecklistReplace,
    CommentCreate,
    StatusUpdate,
    TaskCreate,
    TaskUpdate,
    TimeLog,
    TimeSessionCreate,
)
from ..services import task_service
from ..services.audit import create_audit_log
from ..services.permissions import TaskAction, check_task, ensure
from ..services.serializers import (
    activity_to_dict,
    checklist_item_to_dict,
    comment_to_dict,
    task_to_dict,
    time_session_to_dict,
)


router = APIRouter(prefix="/tasks", tags=["tasks"])


def _load(db: Session, task_id: str) -> Task:
    return task_service.get_task(db, task_id)


def _reload(db: Session, task: Task) -> Task:
    db.commit()
    db.refresh(task)
    return task


@router.post("", status_code=status.HTTP_201_CREATED)
def create_task(body: TaskCreate, request: Request, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = task_service.create_task(
        db,
        me,
        title=body.title,
        project_id=body.project,
        assigned_to_id=body.assigned_to,
        description=body.description,
        due_date=body.due_date,
        priority=body.priority,
        estimated_hours=body.estimated_hours,
        tags=body.tags,
    )
    create_audit_log(db, "TASK_CREATE", "Task", task.id, user_id=me.id, details={"title": task.title}, request=request)
    _reload(db, task)
    return {"message": "Task created successfully", "task": task_to_dict(task)}


@router.get("")
def list_tasks(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    project: Optional[str] = None,
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Task)
    if status_filter:
        q = q.filter(Task.status == status_filter)
    if priority:
        q = q.filter(Task.priority == priority)
    if project:
        q = q.filter(Task.project_id == task_service.parse_id(project, "project id"))
    if assigned_to:
        q = q.filter(Task.assigned_to_id == task_service.parse_id(assigned_to, "user id"))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Task.title.ilike(like), Task.description.ilike(like)))
    # Employees only see work they own or handed out
    if me.role != "admin":
        q = q.filter(or_(Task.assigned_to_id == me.id, Task.created_by_id == me.id))

    total = q.count()
    tasks = q.order_by(Task.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "tasks": [task_to_dict(t) for t in tasks],
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
        "total": total,
    }


@router.get("/{task_id}")
def get_task(task_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = _load(db, task_id)
    ensure(check_task(me, task, TaskAction.VIEW))
    return {"task": task_to_dict(task, detail=True)}


@router.put("/{task_id}")
def update_task(
    task_id: str,
    body: TaskUpdate,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    diff = task_service.update_task_fields(db, task, me, body.changes())
    if diff:
        create_audit_log(db, "TASK_UPDATE", "Task", task.id, user_id=me.id, details={"changes": diff}, request=request)
    _reload(db, task)
    return {"message": "Task updated successfully", "task": task_to_dict(task)}


@router.delete("/{task_id}")
def delete_task(task_id: str, request: Request, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = _load(db, task_id)
    title, tid = task.title, task.id
    task_service.delete_task(db, task, me)
    create_audit_log(db, "TASK_DELETE", "Task", tid, user_id=me.id, details={"title": title}, request=request)
    db.commit()
    return {"message": "Task deleted successfully"}


@router.patch("/{task_id}/status")
def update_status(
    task_id: str,
    body: StatusUpdate,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    old_status = task.status
    task_service.transition_status(db, task, me, body.status)
    create_audit_log(
        db, "TASK_UPDATE", "Task", task.id, user_id=me.id,
        details={"status": {"before": old_status, "after": task.status}}, request=request,
    )
    _reload(db, task)
    return {"message": "Task status updated successfully", "task": task_to_dict(task)}


@router.patch("/{task_id}/accept")
def accept_task(task_id: str, request: Request, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = _load(db, task_id)
    task_service.accept_task(db, task, me)
    create_audit_log(db, "TASK_ACCEPT", "Task", task.id, user_id=me.id, request=request)
    _reload(db, task)
    return {"message": "Task accepted successfully", "task": task_to_dict(task)}


@router.patch("/{task_id}/time")
def log_time(
    task_id: str,
    body: TimeLog,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    task_service.log_time(db, task, me, body.hours_to_add)
    create_audit_log(
        db, "TIME_TRACKED", "Task", task.id, user_id=me.id,
        details={"hoursAdded": body.hours_to_add, "totalActualHours": task.actual_hours}, request=request,
    )
    _reload(db, task)
    return {"message": "Time tracked successfully", "task": task_to_dict(task), "hoursAdded": body.hours_to_add}


@router.post("/{task_id}/time-sessions", status_code=status.HTTP_201_CREATED)
def add_time_session(
    task_id: str,
    body: TimeSessionCreate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    session = task_service.add_time_session(db, task, me, body.start_time, body.end_time, body.description)
    _reload(db, task)
    return {
        "message": "Time session recorded",
        "session": time_session_to_dict(session),
        "task": task_to_dict(task),
    }


@router.patch("/{task_id}/checklist")
def replace_checklist(
    task_id: str,
    body: ChecklistReplace,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    task_service.replace_checklist(db, task, me, [item.model_dump() for item in body.checklist_items])
    _reload(db, task)
    return {
        "message": "Checklist updated successfully",
        "checklist": [checklist_item_to_dict(i) for i in task.checklist],
        "checklistProgress": task.checklist_progress,
        "task": task_to_dict(task),
    }


@router.post("/{task_id}/checklist", status_code=status.HTTP_201_CREATED)
def add_checklist_item(
    task_id: str,
    body: ChecklistItemCreate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    item = task_service.add_checklist_item(db, task, me, body.text, body.completed)
    _reload(db, task)
    db.refresh(item)
    return {"message": "Checklist item added", "item": checklist_item_to_dict(item), "checklistProgress": task.checklist_progress}


@router.put("/{task_id}/checklist/order")
def reorder_checklist(
    task_id: str,
    body: ChecklistReorder,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    task_service.reorder_checklist(db, task, me, body.item_ids)
    _reload(db, task)
    return {"message": "Checklist reordered", "checklist": [checklist_item_to_dict(i) for i in task.checklist]}


@router.patch("/{task_id}/checklist/{item_id}")
def update_checklist_item(
    task_id: str,
    item_id: str,
    body: ChecklistItemUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    item = task_service.update_checklist_item(db, task, me, item_id, text=body.text, completed=body.completed)
    _reload(db, task)
    db.refresh(item)
    return {"message": "Checklist item updated", "item": checklist_item_to_dict(item), "checklistProgress": task.checklist_progress}


@router.delete("/{task_id}/checklist/{item_id}")
def remove_checklist_item(
    task_id: str,
    item_id: str,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    task_service.remove_checklist_item(db, task, me, item_id)
    _reload(db, task)
    return {"message": "Checklist item removed", "checklistProgress": task.checklist_progress}


@router.post("/{task_id}/comments", status_code=status.HTTP_201_CREATED)
def add_comment(
    task_id: str,
    body: CommentCreate,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task = _load(db, task_id)
    comment = task_service.add_comment(db, task, me, body.text)
    create_audit_log(
        db, "COMMENT_ADD", "Task", task.id, user_id=me.id,
        details={"mentions": [str(u.id) for u in comment.mentions]}, request=request,
    )
    db.commit()
    db.refresh(comment)
    return {"message": "Comment added successfully", "comment": comment_to_dict(comment)}


@router.get("/{task_id}/activity")
def get_activity(task_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = _load(db, task_id)
    ensure(check_task(me, task, TaskAction.VIEW))
    return {"activityLog": [activity_to_dict(a) for a in task.activity_log]}
