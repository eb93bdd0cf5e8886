from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import ValidationError
from ..models.models import Project, Task, User, project_team
from ..services.serializers import project_ref, user_ref


router = APIRouter(prefix="/search", tags=["search"])

SUGGESTION_LIMIT = 10


def _task_scope(db: Session, user: User):
    q = db.query(Task)
    if user.role != "admin":
        q = q.filter(or_(Task.assigned_to_id == user.id, Task.created_by_id == user.id))
    return q


def _project_scope(db: Session, user: User):
    q = db.query(Project)
    if user.role != "admin":
        member_of = db.query(project_team.c.project_id).filter(project_team.c.user_id == user.id)
        q = q.filter(or_(Project.manager_id == user.id, Project.id.in_(member_of)))
    return q


@router.get("")
def global_search(
    q: str = Query(""),
    type: Literal["all", "tasks", "projects", "users"] = "all",
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = (q or "").strip()
    if len(q) < 2:
        raise ValidationError("Search query must be at least 2 characters")

    like = f"%{q}%"
    results: dict = {}

    if type in ("all", "tasks"):
        rows = (
            _task_scope(db, user)
            .filter(or_(Task.title.ilike(like), Task.description.ilike(like), cast(Task.tags, String).ilike(like)))
            .order_by(Task.created_at.desc())
            .limit(limit)
            .all()
        )
        results["tasks"] = [
            {
                "id": str(t.id),
                "title": t.title,
                "description": t.description,
                "status": t.status,
                "priority": t.priority,
                "dueDate": t.due_date.isoformat() if t.due_date else None,
                "project": project_ref(t.project),
                "assignedTo": user_ref(t.assigned_to),
            }
            for t in rows
        ]

    if type in ("all", "projects"):
        rows = (
            _project_scope(db, user)
            .filter(or_(Project.name.ilike(like), Project.description.ilike(like), cast(Project.tags, String).ilike(like)))
            .order_by(Project.created_at.desc())
            .limit(limit)
            .all()
        )
        results["projects"] = [
            {
                "id": str(p.id),
                "name": p.name,
                "description": p.description,
                "status": p.status,
                "priority": p.priority,
                "progress": p.progress or 0,
                "manager": user_ref(p.manager),
            }
            for p in rows
        ]

    # Directory search is an admin tool
    if user.role == "admin" and type in ("all", "users"):
        rows = (
            db.query(User)
            .filter(User.status == "active")
            .filter(
                or_(
                    User.name.ilike(like),
                    User.email.ilike(like),
                    User.department.ilike(like),
                    User.position.ilike(like),
                )
            )
            .order_by(User.name.asc())
            .limit(limit)
            .all()
        )
        results["users"] = [
            {
                "id": str(u.id),
                "name": u.name,
                "email": u.email,
                "role": u.role,
                "department": u.department,
                "position": u.position,
                "avatar": u.avatar,
            }
            for u in rows
        ]

    total = sum(len(v) for v in results.values())
    return {"query": q, "totalResults": total, "results": results}


@router.get("/suggestions")
def suggestions(
    q: str = Query(""),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = (q or "").strip()
    if len(q) < 2:
        return {"suggestions": []}
    like = f"%{q}%"
    out = []
    for t in _task_scope(db, user).filter(Task.title.ilike(like)).limit(5).all():
        out.append({"type": "task", "text": t.title, "id": str(t.id)})
    for p in _project_scope(db, user).filter(Project.name.ilike(like)).limit(5).all():
        out.append({"type": "project", "text": p.name, "id": str(p.id)})
    if user.role == "admin":
        for u in db.query(User).filter(User.status == "active", User.name.ilike(like)).limit(3).all():
            out.append({"type": "user", "text": u.name, "id": str(u.id)})
    return {"suggestions": out[:SUGGESTION_LIMIT]}
