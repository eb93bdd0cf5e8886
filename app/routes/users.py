import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin
from ..db import get_db
from ..errors import AuthorizationError
from ..models.models import Project, Task, User
from ..schemas.users import UserUpdate
from ..services import notifications
from ..services.audit import compute_diff, create_audit_log
from ..services.serializers import project_ref, user_to_dict
from ..services.users import activate_user, deactivate_user, ensure_email_free, get_user_or_404


router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
def list_users(
    role: Optional[str] = None,
    department: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    q = db.query(User)
    if role:
        q = q.filter(User.role == role)
    if department:
        q = q.filter(User.department.ilike(f"%{department}%"))
    if status:
        q = q.filter(User.status == status)
    else:
        q = q.filter(User.status != "deleted")
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    total = q.count()
    users = q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "users": [user_to_dict(u) for u in users],
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
        "total": total,
    }


@router.get("/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    user = get_user_or_404(db, user_id)
    if me.role != "admin" and user.id != me.id:
        raise AuthorizationError("Access denied")
    data = user_to_dict(user)
    data["assignedTasks"] = [
        {"id": str(t.id), "title": t.title, "status": t.status, "priority": t.priority, "project": project_ref(t.project)}
        for t in db.query(Task).filter(Task.assigned_to_id == user.id).order_by(Task.created_at.desc()).all()
    ]
    data["createdProjects"] = [
        project_ref(p)
        for p in db.query(Project).filter(Project.created_by_id == user.id).order_by(Project.created_at.desc()).all()
    ]
    return {"user": data}


@router.put("/{user_id}")
def update_user(
    user_id: str,
    body: UserUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    user = get_user_or_404(db, user_id)
    before = user_to_dict(user)
    old_role = user.role
    data = body.model_dump(exclude_unset=True)
    if data.get("email"):
        data["email"] = ensure_email_free(db, data["email"], exclude_id=user.id)
    for field, value in data.items():
        if value is None and field in ("name", "email", "role"):
            continue
        setattr(user, field, value)
    db.flush()
    if user.role != old_role:
        notifications.notify_role_changed(db, user, old_role)
    diff = compute_diff(before, user_to_dict(user))
    diff.pop("updatedAt", None)
    if diff:
        create_audit_log(db, "USER_UPDATE", "User", user.id, user_id=admin.id, details={"changes": diff}, request=request)
    db.commit()
    db.refresh(user)
    return {"message": "User updated successfully", "user": user_to_dict(user)}


@router.patch("/{user_id}/deactivate")
def deactivate(user_id: str, request: Request, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    user = get_user_or_404(db, user_id)
    deactivate_user(db, user, admin)
    create_audit_log(db, "USER_DEACTIVATE", "User", user.id, user_id=admin.id, request=request)
    db.commit()
    return {"message": "User deactivated successfully"}


@router.patch("/{user_id}/activate")
def activate(user_id: str, request: Request, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    user = get_user_or_404(db, user_id)
    activate_user(db, user)
    create_audit_log(db, "USER_ACTIVATE", "User", user.id, user_id=admin.id, request=request)
    db.commit()
    return {"message": "User activated successfully"}
