import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import NotFoundError
from ..models.models import Notification, User, utcnow
from ..services.serializers import notification_to_dict
from ..services.task_service import parse_id


router = APIRouter(prefix="/notifications", tags=["notifications"])


def _own(db: Session, notification_id: str, user: User) -> Notification:
    # Someone else's notification is indistinguishable from a missing one
    notif = (
        db.query(Notification)
        .filter(Notification.id == parse_id(notification_id, "notification id"), Notification.user_id == user.id)
        .first()
    )
    if not notif:
        raise NotFoundError("Notification not found")
    return notif


def unread_count(db: Session, user: User) -> int:
    return db.query(Notification).filter(Notification.user_id == user.id, Notification.is_read.is_(False)).count()


@router.get("")
def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    total = q.count()
    rows = q.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "notifications": [notification_to_dict(n) for n in rows],
        "unreadCount": unread_count(db, user),
        "totalPages": math.ceil(total / limit) if total else 0,
        "currentPage": page,
        "total": total,
    }


@router.patch("/mark-all-read")
def mark_all_read(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update({Notification.is_read: True, Notification.read_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return {"message": "All notifications marked as read", "updated": updated}


@router.patch("/{notification_id}/read")
def mark_read(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    notif = _own(db, notification_id, user)
    if not notif.is_read:
        notif.is_read = True
        notif.read_at = utcnow()
        db.commit()
        db.refresh(notif)
    return {"message": "Notification marked as read", "notification": notification_to_dict(notif)}


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    notif = _own(db, notification_id, user)
    db.delete(notif)
    db.commit()
    return {"message": "Notification deleted"}
