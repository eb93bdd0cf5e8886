import math
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import NotFoundError, ValidationError
from ..models.models import Event, Project, Task, User, as_utc, project_team
from ..schemas.projects import ProjectCreate, ProjectUpdate
from ..services.audit import compute_diff, create_audit_log
from ..services.permissions import ProjectAction, check_project, check_project_create, ensure
from ..services.serializers import project_to_dict, task_to_dict
from ..services.task_service import get_active_user, parse_id


router = APIRouter(prefix="/projects", tags=["projects"])


def _get_project(db: Session, project_id: str) -> Project:
    project = db.query(Project).filter(Project.id == parse_id(project_id, "project id")).first()
    if not project:
        raise NotFoundError("Project not found")
    return project


def _resolve_team(db: Session, ids: List[str]) -> List[User]:
    wanted = list(dict.fromkeys(parse_id(i, "user id") for i in ids))
    if not wanted:
        return []
    users = db.query(User).filter(User.id.in_(wanted), User.status == "active").all()
    if len(users) != len(wanted):
        raise ValidationError("Some team members are invalid or inactive")
    return users


def _snapshot(project: Project) -> dict:
    return {
        "name": project.name,
        "description": project.description,
        "status": project.status,
        "priority": project.priority,
        "budget": project.budget,
        "managerId": str(project.manager_id),
        "team": sorted(str(u.id) for u in project.team),
        "tags": list(project.tags or []),
        "isArchived": bool(project.is_archived),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(body: ProjectCreate, request: Request, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    ensure(check_project_create(me))
    manager = get_active_user(db, body.manager, "Manager") if body.manager else me
    team = _resolve_team(db, body.team)
    project = Project(
        name=body.name.strip(),
        description=body.description,
        status=body.status,
        priority=body.priority,
        start_date=body.start_date,
        end_date=body.end_date,
        budget=body.budget if body.budget is not None else 0,
        manager_id=manager.id,
        created_by_id=me.id,
        tags=body.tags,
        progress=0,
    )
    project.team = team
    db.add(project)
    db.flush()
    create_audit_log(db, "PROJECT_CREATE", "Project", project.id, user_id=me.id, details={"name": project.name}, request=request)
    db.commit()
    db.refresh(project)
    return {"message": "Project created successfully", "project": project_to_dict(project)}


@router.get("")
def list_projects(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Project)
    if status_filter:
        q = q.filter(Project.status == status_filter)
    if priority:
        q = q.filter(Project.priority == priority)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Project.name.ilike(like), Project.description.ilike(like)))
    if me.role != "admin":
        member_of = db.query(project_team.c.project_id).filter(project_team.c.user_id == me.id)
        q = q.filter(or_(Project.manager_id == me.id, Project.id.in_(member_of)))

    total = q.count()
    projects = q.order_by(Project.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "projects": [project_to_dict(p) for p in projects],
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
        "total": total,
    }


@router.get("/mine/tasks")
def my_created_tasks(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Task).filter(Task.created_by_id == me.id)
    if status_filter:
        q = q.filter(Task.status == status_filter)
    if priority:
        q = q.filter(Task.priority == priority)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Task.title.ilike(like), Task.description.ilike(like)))
    total = q.count()
    tasks = q.order_by(Task.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "tasks": [task_to_dict(t) for t in tasks],
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
        "total": total,
    }


@router.get("/{project_id}")
def get_project(project_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = _get_project(db, project_id)
    ensure(check_project(me, project, ProjectAction.VIEW))
    return {"project": project_to_dict(project, include_tasks=True)}


@router.put("/{project_id}")
def update_project(
    project_id: str,
    body: ProjectUpdate,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    project = _get_project(db, project_id)
    ensure(check_project(me, project, ProjectAction.UPDATE))
    before = _snapshot(project)
    data = body.model_dump(exclude_unset=True)

    start = data.get("start_date") or project.start_date
    end = data.get("end_date") or project.end_date
    if as_utc(end) <= as_utc(start):
        raise ValidationError("End date must be after start date")

    if "manager" in data:
        if data.pop("manager") is not None:
            project.manager_id = get_active_user(db, body.manager, "Manager").id
    if "team" in data:
        project.team = _resolve_team(db, data.pop("team") or [])
    if "name" in data and data["name"] is not None:
        data["name"] = data["name"].strip()
    for field, value in data.items():
        if value is None and field in ("name", "status", "priority", "start_date", "end_date"):
            continue
        setattr(project, field, value)

    db.flush()
    diff = compute_diff(before, _snapshot(project))
    if diff:
        create_audit_log(db, "PROJECT_UPDATE", "Project", project.id, user_id=me.id, details={"changes": diff}, request=request)
    db.commit()
    db.refresh(project)
    return {"message": "Project updated successfully", "project": project_to_dict(project)}


@router.delete("/{project_id}")
def delete_project(project_id: str, request: Request, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = _get_project(db, project_id)
    ensure(check_project(me, project, ProjectAction.DELETE))
    pid: uuid.UUID = project.id
    name = project.name
    task_ids = [t.id for t in project.tasks]
    # Calendar events outlive the project and its tasks
    db.query(Event).filter(Event.project_id == pid).update({Event.project_id: None}, synchronize_session=False)
    if task_ids:
        db.query(Event).filter(Event.task_id.in_(task_ids)).update({Event.task_id: None}, synchronize_session=False)
    db.delete(project)
    create_audit_log(
        db, "PROJECT_DELETE", "Project", pid, user_id=me.id,
        details={"name": name, "deletedTasks": len(task_ids)}, request=request,
    )
    db.commit()
    return {"message": "Project and associated tasks deleted successfully"}
