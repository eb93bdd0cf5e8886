"""
Audit logging service.
Append-only audit log with integrity hashing.

Entries are written inside a SAVEPOINT so a failing audit write never rolls
back (or fails) the operation being audited.
"""
import hashlib
import json
from typing import Optional, Dict, Any

import structlog
from fastapi import Request
from sqlalchemy.orm import Session

from ..models.models import AuditLog, utcnow
from ..config import settings


logger = structlog.get_logger(__name__)


def _integrity_hash(payload: Dict[str, Any], secret: str) -> str:
    canonical = {k: v for k, v in payload.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_audit_log(
    db: Session,
    action: str,
    resource: str,
    resource_id: Optional[Any] = None,
    user_id: Optional[Any] = None,
    details: Optional[Dict] = None,
    request: Optional[Request] = None,
) -> Optional[AuditLog]:
    """
    Append an audit entry.

    Args:
        db: Database session
        action: Action performed (LOGIN|TASK_CREATE|FILE_UPLOAD|...)
        resource: Resource kind (Auth|User|Task|Project|File|Event)
        resource_id: Identifier of the affected record
        user_id: Acting user
        details: Free-form context for the entry
        request: Incoming request, used for ip address and user agent

    Returns:
        The AuditLog row, or None when the write failed
    """
    ip_address = None
    user_agent = None
    if request is not None:
        ip_address = request.client.host if request.client else None
        user_agent = request.headers.get("user-agent")

    timestamp = utcnow()
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=details,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500] or None,
        timestamp=timestamp,
        integrity_hash=_integrity_hash(
            {
                "action": action,
                "resource": resource,
                "resource_id": str(resource_id) if resource_id is not None else None,
                "user_id": str(user_id) if user_id else None,
                "timestamp": timestamp.isoformat(),
                "details": details,
            },
            settings.jwt_secret,
        ),
    )
    try:
        with db.begin_nested():
            db.add(entry)
    except Exception as e:
        logger.warning("audit_log_failed", action=action, resource=resource, error=str(e))
        return None
    return entry


def get_audit_logs(
    db: Session,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    user_id: Optional[Any] = None,
    limit: int = 100,
    offset: int = 0,
) -> list:
    query = db.query(AuditLog)
    if resource:
        query = query.filter(AuditLog.resource == resource)
    if resource_id:
        query = query.filter(AuditLog.resource_id == str(resource_id))
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    return query.order_by(AuditLog.timestamp.desc()).offset(offset).limit(limit).all()


def compute_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Return {field: {"before": x, "after": y}} for every changed field."""
    diff = {}
    for key in set(before) | set(after):
        if before.get(key) != after.get(key):
            diff[key] = {"before": before.get(key), "after": after.get(key)}
    return diff
