from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import require_admin
from ..db import get_db
from ..models.models import Project, Task, TASK_COMPLETED, User, utcnow
from ..schemas.users import CreateUserRequest
from ..services import notifications
from ..services.audit import create_audit_log, get_audit_logs
from ..services.serializers import audit_log_to_dict, user_to_dict
from ..services.task_service import parse_id
from ..services.users import create_user


router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/create-user", status_code=status.HTTP_201_CREATED)
def admin_create_user(
    body: CreateUserRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    user = create_user(
        db,
        name=body.name,
        email=body.email,
        password=body.password,
        role=body.role,
        department=body.department,
        position=body.position,
    )
    notifications.notify_user_welcome(db, user)
    create_audit_log(
        db, "USER_CREATE", "User", user.id, user_id=admin.id,
        details={"createdByAdmin": True, "role": user.role}, request=request,
    )
    db.commit()
    db.refresh(user)
    return {"message": "User created successfully", "user": user_to_dict(user)}


@router.get("/dashboard-stats")
def dashboard_stats(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    def count_users(*criteria) -> int:
        return db.query(func.count(User.id)).filter(*criteria).scalar() or 0

    task_counts = dict(db.query(Task.status, func.count(Task.id)).group_by(Task.status).all())
    project_counts = dict(db.query(Project.status, func.count(Project.id)).group_by(Project.status).all())
    overdue = (
        db.query(func.count(Task.id))
        .filter(Task.due_date.isnot(None), Task.due_date < utcnow(), Task.status != TASK_COMPLETED)
        .scalar()
        or 0
    )
    return {
        "users": {
            "total": count_users(User.status == "active"),
            "admins": count_users(User.role == "admin", User.status == "active"),
            "employees": count_users(User.role == "employee", User.status == "active"),
            "inactive": count_users(User.status == "inactive"),
        },
        "tasks": {
            "total": sum(task_counts.values()),
            "byStatus": task_counts,
            "overdue": overdue,
        },
        "projects": {
            "total": sum(project_counts.values()),
            "byStatus": project_counts,
        },
    }


@router.get("/audit-logs")
def audit_logs(
    resource: Optional[str] = None,
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    entries = get_audit_logs(
        db,
        resource=resource,
        resource_id=resource_id,
        user_id=parse_id(user_id, "user id") if user_id else None,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return {"logs": [audit_log_to_dict(e) for e in entries], "currentPage": page}
