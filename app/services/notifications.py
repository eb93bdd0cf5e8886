"""
Notification dispatcher.

Notifications are side effects of a domain write: ``create_notification``
records one row inside a SAVEPOINT and never raises, so a failing insert can
neither abort nor roll back the operation that triggered it.
"""
import re
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.models import Event, Notification, Task, User


logger = structlog.get_logger(__name__)

NOTIFICATION_TYPES = (
    "TASK_ASSIGNED",
    "TASK_DUE_SOON",
    "TASK_OVERDUE",
    "TASK_COMPLETED",
    "PROJECT_DEADLINE",
    "COMMENT_MENTION",
    "TASK_ACCEPTED",
    "TASK_REJECTED",
    "USER_INVITED",
    "ROLE_CHANGED",
    "EVENT_INVITATION",
    "EVENT_UPDATED",
    "EVENT_CANCELLED",
)

# Stable handle embedded by clients: @[<user uuid>:Display Name]
MENTION_HANDLE_RE = re.compile(r"@\[([0-9a-fA-F-]{36}):([^\]]*)\]")
# Free-text fallback: @alice, not part of an e-mail address
MENTION_TOKEN_RE = re.compile(r"(?<![\w@])@([A-Za-z0-9_][\w.'-]*)")


def _fmt_date(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return f"{value.month}/{value.day}/{value.year}"


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    type: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> Optional[Notification]:
    if type not in NOTIFICATION_TYPES:
        logger.warning("notification_unknown_type", type=type, user_id=str(user_id))
        return None
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message[:1000],
        data=data or {},
    )
    try:
        with db.begin_nested():
            db.add(notification)
    except Exception as e:
        logger.warning("notification_create_failed", type=type, user_id=str(user_id), error=str(e))
        return None
    return notification


def notify_task_assigned(db: Session, task: Task, assigner: User) -> Optional[Notification]:
    return create_notification(
        db,
        task.assigned_to_id,
        "TASK_ASSIGNED",
        "New Task Assigned",
        f"{assigner.name} assigned you the task: {task.title}",
        {"taskId": str(task.id), "type": "task"},
    )


def notify_task_accepted(db: Session, task: Task, assignee: User) -> Optional[Notification]:
    return create_notification(
        db,
        task.created_by_id,
        "TASK_ACCEPTED",
        "Task Accepted",
        f'{assignee.name} accepted the task "{task.title}"',
        {"taskId": str(task.id), "type": "task"},
    )


def notify_task_completed(db: Session, task: Task, actor: User) -> Optional[Notification]:
    return create_notification(
        db,
        task.created_by_id,
        "TASK_COMPLETED",
        "Task Completed",
        f'{actor.name} completed the task "{task.title}"',
        {"taskId": str(task.id), "type": "task"},
    )


def notify_comment_mention(db: Session, task: Task, mentioned: User, commenter: User) -> Optional[Notification]:
    return create_notification(
        db,
        mentioned.id,
        "COMMENT_MENTION",
        "You were mentioned",
        f'{commenter.name} mentioned you in a comment on "{task.title}"',
        {"taskId": str(task.id), "type": "task"},
    )


def _event_data(event: Event, with_dates: bool = True) -> Dict[str, Any]:
    data: Dict[str, Any] = {"eventId": str(event.id), "type": "event"}
    if with_dates:
        data["startDate"] = event.start_date.isoformat()
        data["endDate"] = event.end_date.isoformat()
    return data


def notify_event_invitation(db: Session, event: Event, attendee: User) -> Optional[Notification]:
    return create_notification(
        db,
        attendee.id,
        "EVENT_INVITATION",
        "Event Invitation",
        f'You\'ve been invited to "{event.title}" on {_fmt_date(event.start_date)}',
        _event_data(event),
    )


def notify_event_update(db: Session, event: Event, attendee: User) -> Optional[Notification]:
    return create_notification(
        db,
        attendee.id,
        "EVENT_UPDATED",
        "Event Updated",
        f'"{event.title}" has been updated. Check the new details.',
        _event_data(event),
    )


def notify_event_cancellation(db: Session, event: Event, attendee: User) -> Optional[Notification]:
    return create_notification(
        db,
        attendee.id,
        "EVENT_CANCELLED",
        "Event Cancelled",
        f'"{event.title}" scheduled for {_fmt_date(event.start_date)} has been cancelled.',
        _event_data(event, with_dates=False),
    )


def notify_user_welcome(db: Session, user: User) -> Optional[Notification]:
    return create_notification(
        db,
        user.id,
        "USER_INVITED",
        "Welcome to TaskNest",
        f"Welcome {user.name}! Your account has been created successfully.",
        {"type": "welcome"},
    )


def notify_role_changed(db: Session, user: User, old_role: str) -> Optional[Notification]:
    return create_notification(
        db,
        user.id,
        "ROLE_CHANGED",
        "Role Changed",
        f"Your role has been changed from {old_role} to {user.role}",
        {"type": "user", "oldRole": old_role, "newRole": user.role},
    )


def extract_mentions(text: str) -> tuple[List[uuid.UUID], List[str]]:
    """Split comment text into handle ids and lower-cased free-text tokens."""
    ids: List[uuid.UUID] = []
    for raw_id, _name in MENTION_HANDLE_RE.findall(text or ""):
        try:
            ids.append(uuid.UUID(raw_id))
        except ValueError:
            continue
    remainder = MENTION_HANDLE_RE.sub(" ", text or "")
    tokens = [t.rstrip(".'-").lower() for t in MENTION_TOKEN_RE.findall(remainder)]
    return ids, [t for t in tokens if t]


def _name_matches(name: str, token: str) -> bool:
    lowered = (name or "").strip().lower()
    if not lowered:
        return False
    return lowered == token or lowered.split()[0] == token or lowered.replace(" ", "") == token


def resolve_mentions(db: Session, text: str, author_id: Optional[uuid.UUID] = None) -> List[User]:
    """Active users referenced by the comment, in first-seen order, without the author."""
    ids, tokens = extract_mentions(text)
    found: List[User] = []
    if ids:
        found.extend(
            db.query(User).filter(User.id.in_(ids), User.status == "active").all()
        )
    for token in dict.fromkeys(tokens):
        first_word = token.split(".")[0]
        candidates = (
            db.query(User)
            .filter(User.status == "active", func.lower(User.name).like(f"{first_word[:1]}%"))
            .all()
        )
        found.extend(u for u in candidates if _name_matches(u.name, token))
    unique: Dict[uuid.UUID, User] = {}
    for user in found:
        if user.id != author_id and user.id not in unique:
            unique[user.id] = user
    return list(unique.values())


def notify_mentions(db: Session, task: Task, commenter: User, users: Iterable[User]) -> int:
    sent = 0
    for user in users:
        if notify_comment_mention(db, task, user, commenter) is not None:
            sent += 1
    return sent
