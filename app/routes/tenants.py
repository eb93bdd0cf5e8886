"""Tenant administration. Tenants are the employee accounts of the workspace."""
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..auth.security import require_admin
from ..db import get_db
from ..errors import NotFoundError
from ..models.models import Task, User
from ..schemas.users import TenantCreate, TenantUpdate
from ..services import notifications
from ..services.audit import create_audit_log
from ..services.serializers import iso, user_to_dict
from ..services.users import activate_user, create_user, ensure_email_free, get_user_or_404, release_account


router = APIRouter(prefix="/admin/tenants", tags=["tenants"])

TENANT_ROLE = "employee"


def _get_tenant(db: Session, tenant_id: str) -> User:
    try:
        tenant = get_user_or_404(db, tenant_id)
    except NotFoundError:
        raise NotFoundError("Tenant not found")
    if tenant.role != TENANT_ROLE or tenant.status == "deleted":
        raise NotFoundError("Tenant not found")
    return tenant


def _tenant_to_dict(db: Session, tenant: User) -> dict:
    data = user_to_dict(tenant)
    data["assignedTasks"] = [
        {"id": str(t.id), "title": t.title, "status": t.status, "priority": t.priority, "dueDate": iso(t.due_date)}
        for t in db.query(Task).filter(Task.assigned_to_id == tenant.id).order_by(Task.created_at.desc()).all()
    ]
    return data


@router.get("")
def list_tenants(
    search: Optional[str] = None,
    department: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    q = db.query(User).filter(User.role == TENANT_ROLE, User.status != "deleted")
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(
            or_(User.name.ilike(like), User.email.ilike(like), User.department.ilike(like), User.position.ilike(like))
        )
    if department:
        q = q.filter(User.department.ilike(f"%{department}%"))
    if status_filter in ("active", "inactive"):
        q = q.filter(User.status == status_filter)
    total = q.count()
    tenants = q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "success": True,
        "tenants": [_tenant_to_dict(db, t) for t in tenants],
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
        "total": total,
    }


@router.get("/stats")
def tenant_stats(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    def count(*criteria) -> int:
        return db.query(func.count(User.id)).filter(User.role == TENANT_ROLE, *criteria).scalar() or 0

    departments = (
        db.query(User.department, func.count(User.id))
        .filter(User.role == TENANT_ROLE, User.status == "active")
        .group_by(User.department)
        .order_by(func.count(User.id).desc())
        .all()
    )
    recent = (
        db.query(User)
        .filter(User.role == TENANT_ROLE, User.status != "deleted")
        .order_by(User.created_at.desc())
        .limit(5)
        .all()
    )
    return {
        "success": True,
        "stats": {
            "total": count(User.status != "deleted"),
            "active": count(User.status == "active"),
            "inactive": count(User.status == "inactive"),
            "departments": [{"department": d, "count": c} for d, c in departments],
            "recent": [
                {
                    "id": str(u.id),
                    "name": u.name,
                    "email": u.email,
                    "department": u.department,
                    "isActive": u.is_active,
                    "createdAt": iso(u.created_at),
                }
                for u in recent
            ],
        },
    }


@router.get("/{tenant_id}")
def get_tenant(tenant_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return {"success": True, "tenant": _tenant_to_dict(db, _get_tenant(db, tenant_id))}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_tenant(body: TenantCreate, request: Request, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    tenant = create_user(
        db,
        name=body.name,
        email=body.email,
        password=body.password,
        role=TENANT_ROLE,
        department=body.department,
        position=body.position,
        contact_number=body.contact_number,
        room_number=body.room_number,
    )
    notifications.notify_user_welcome(db, tenant)
    create_audit_log(
        db, "USER_CREATE", "User", tenant.id, user_id=admin.id,
        details={"createdByAdmin": True, "role": TENANT_ROLE, "tenant": True}, request=request,
    )
    db.commit()
    db.refresh(tenant)
    return {"success": True, "message": "Tenant created successfully", "tenant": user_to_dict(tenant)}


@router.put("/{tenant_id}")
def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    tenant = _get_tenant(db, tenant_id)
    data = body.model_dump(exclude_unset=True)
    if data.get("email"):
        data["email"] = ensure_email_free(db, data["email"], exclude_id=tenant.id)
    for field, value in data.items():
        if value is None and field in ("name", "email"):
            continue
        setattr(tenant, field, value)
    create_audit_log(db, "USER_UPDATE", "User", tenant.id, user_id=admin.id, details={"fields": sorted(data)}, request=request)
    db.commit()
    db.refresh(tenant)
    return {"success": True, "message": "Tenant updated successfully", "tenant": user_to_dict(tenant)}


@router.patch("/{tenant_id}/activate")
def activate_tenant(tenant_id: str, request: Request, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    tenant = _get_tenant(db, tenant_id)
    activate_user(db, tenant)
    create_audit_log(db, "USER_ACTIVATE", "User", tenant.id, user_id=admin.id, request=request)
    db.commit()
    return {"success": True, "message": "Tenant activated successfully"}


@router.delete("/{tenant_id}")
def delete_tenant(tenant_id: str, request: Request, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    tenant = _get_tenant(db, tenant_id)
    release_account(db, tenant)
    create_audit_log(db, "USER_DELETE", "User", tenant.id, user_id=admin.id, request=request)
    db.commit()
    return {"success": True, "message": "Tenant deleted successfully"}
