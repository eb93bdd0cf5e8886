from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import NotFoundError, ValidationError
from ..models.models import Event, Project, Task, User, as_utc, event_attendees
from ..schemas.events import EventCreate, EventUpdate
from ..services import notifications
from ..services.audit import create_audit_log
from ..services.permissions import EventAction, check_event, ensure
from ..services.serializers import event_to_dict
from ..services.task_service import parse_id


router = APIRouter(prefix="/events", tags=["events"])


def _get_event(db: Session, event_id: str) -> Event:
    event = db.query(Event).filter(Event.id == parse_id(event_id, "event id")).first()
    if not event:
        raise NotFoundError("Event not found")
    return event


def _resolve_attendees(db: Session, ids: List[str]) -> List[User]:
    wanted = list(dict.fromkeys(parse_id(i, "user id") for i in ids))
    if not wanted:
        return []
    users = db.query(User).filter(User.id.in_(wanted), User.status == "active").all()
    if len(users) != len(wanted):
        raise ValidationError("Some attendees are invalid or inactive")
    return users


def _link(db: Session, model, raw: Optional[str], label: str):
    if not raw:
        return None
    row = db.get(model, parse_id(raw, f"{label.lower()} id"))
    if row is None:
        raise NotFoundError(f"{label} not found")
    return row.id


@router.get("")
def list_events(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    type: Optional[str] = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    q = db.query(Event)
    if start and end:
        lo, hi = as_utc(start), as_utc(end)
        q = q.filter(
            or_(
                and_(Event.start_date >= lo, Event.start_date <= hi),
                and_(Event.end_date >= lo, Event.end_date <= hi),
            )
        )
    if type:
        q = q.filter(Event.type == type)
    if me.role != "admin":
        attending = db.query(event_attendees.c.event_id).filter(event_attendees.c.user_id == me.id)
        q = q.filter(or_(Event.created_by_id == me.id, Event.id.in_(attending)))
    events = q.order_by(Event.start_date.asc()).all()
    return {"events": [event_to_dict(e) for e in events]}


@router.get("/{event_id}")
def get_event(event_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    event = _get_event(db, event_id)
    ensure(check_event(me, event, EventAction.VIEW))
    return {"event": event_to_dict(event)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_event(body: EventCreate, request: Request, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    event = Event(
        title=body.title.strip(),
        description=body.description,
        start_date=body.start_date,
        end_date=body.end_date,
        all_day=body.all_day,
        type=body.type,
        created_by_id=me.id,
        project_id=_link(db, Project, body.project, "Project"),
        task_id=_link(db, Task, body.task, "Task"),
    )
    if body.color:
        event.color = body.color
    event.attendees = _resolve_attendees(db, body.attendees)
    db.add(event)
    db.flush()
    for attendee in event.attendees:
        if attendee.id != me.id:
            notifications.notify_event_invitation(db, event, attendee)
    create_audit_log(db, "EVENT_CREATE", "Event", event.id, user_id=me.id, details={"title": event.title}, request=request)
    db.commit()
    db.refresh(event)
    return {"message": "Event created successfully", "event": event_to_dict(event)}


@router.put("/{event_id}")
def update_event(
    event_id: str,
    body: EventUpdate,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    event = _get_event(db, event_id)
    ensure(check_event(me, event, EventAction.UPDATE))
    data = body.model_dump(exclude_unset=True)

    start = data.get("start_date") or event.start_date
    end = data.get("end_date") or event.end_date
    if as_utc(end) <= as_utc(start):
        raise ValidationError("End date must be after start date")

    previous = {u.id for u in event.attendees}
    if "attendees" in data:
        event.attendees = _resolve_attendees(db, data.pop("attendees") or [])
    if "project" in data:
        event.project_id = _link(db, Project, data.pop("project"), "Project")
    if "task" in data:
        event.task_id = _link(db, Task, data.pop("task"), "Task")
    for field, value in data.items():
        if value is None and field in ("title", "start_date", "end_date", "all_day", "type", "color"):
            continue
        setattr(event, field, value)
    db.flush()

    for attendee in event.attendees:
        if attendee.id == me.id:
            continue
        if attendee.id in previous:
            notifications.notify_event_update(db, event, attendee)
        else:
            notifications.notify_event_invitation(db, event, attendee)
    create_audit_log(db, "EVENT_UPDATE", "Event", event.id, user_id=me.id, request=request)
    db.commit()
    db.refresh(event)
    return {"message": "Event updated successfully", "event": event_to_dict(event)}


@router.delete("/{event_id}")
def delete_event(event_id: str, request: Request, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    event = _get_event(db, event_id)
    ensure(check_event(me, event, EventAction.DELETE))
    for attendee in event.attendees:
        if attendee.id != me.id:
            notifications.notify_event_cancellation(db, event, attendee)
    eid, title = event.id, event.title
    db.delete(event)
    create_audit_log(db, "EVENT_DELETE", "Event", eid, user_id=me.id, details={"title": title}, request=request)
    db.commit()
    return {"message": "Event deleted successfully"}
