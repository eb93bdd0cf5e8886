"""
Capability evaluation for tasks, projects, attachments and events.

Every function here is a pure read of the actor and the target entity: it
never mutates state. Callers get a ``Decision`` and pass it to ``ensure``,
which raises ``AuthorizationError`` carrying the deny reason verbatim.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from ..errors import AuthorizationError
from ..models.models import Event, Project, Task, TaskAttachment, User


class TaskAction(str, Enum):
    VIEW = "view"
    UPDATE = "update"
    DELETE = "delete"
    TRANSITION = "transition"
    LOG_TIME = "log_time"
    EDIT_CHECKLIST = "edit_checklist"
    ACCEPT = "accept"
    COMMENT = "comment"
    UPLOAD_FILE = "upload_file"
    DOWNLOAD_FILE = "download_file"


class ProjectAction(str, Enum):
    VIEW = "view"
    UPDATE = "update"
    DELETE = "delete"
    CREATE_TASK = "create_task"


class EventAction(str, Enum):
    VIEW = "view"
    UPDATE = "update"
    DELETE = "delete"


# Fields a non-assignee editor (the creator) may still change through PUT /tasks/{id}
CREATOR_EDITABLE_FIELDS = frozenset({"actual_hours"})

# Operations only the assignee may perform, admins included
ASSIGNEE_ONLY = frozenset({
    TaskAction.TRANSITION,
    TaskAction.LOG_TIME,
    TaskAction.EDIT_CHECKLIST,
    TaskAction.ACCEPT,
})

TASK_DENY_REASONS = {
    TaskAction.VIEW: "Access denied",
    TaskAction.UPDATE: "Access denied",
    TaskAction.DELETE: "Only admin or task creator can delete this task",
    TaskAction.TRANSITION: "Only assigned user can update task status",
    TaskAction.LOG_TIME: "Only assigned user can update time",
    TaskAction.EDIT_CHECKLIST: "Only assigned user can update checklist",
    TaskAction.ACCEPT: "Only assigned user can accept this task",
    TaskAction.COMMENT: "Access denied",
    TaskAction.UPLOAD_FILE: "Not authorized to upload files to this task",
    TaskAction.DOWNLOAD_FILE: "Access denied",
}

PROJECT_DENY_REASONS = {
    ProjectAction.VIEW: "Access denied",
    ProjectAction.UPDATE: "Only admin or project manager can update this project",
    ProjectAction.DELETE: "Only admin or project manager can delete this project",
    ProjectAction.CREATE_TASK: "Only admin or project manager can create tasks in this project",
}

EVENT_DENY_REASONS = {
    EventAction.VIEW: "Access denied",
    EventAction.UPDATE: "Only admin or event creator can update this event",
    EventAction.DELETE: "Only admin or event creator can delete this event",
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


def ensure(decision: Decision) -> None:
    if not decision.allowed:
        raise AuthorizationError(decision.reason)


def _is_admin(actor: User) -> bool:
    return actor.role == "admin"


def _in_team(actor: User, project: Optional[Project]) -> bool:
    if project is None:
        return False
    return any(member.id == actor.id for member in project.team)


def project_capabilities(actor: User, project: Project) -> frozenset:
    if _is_admin(actor):
        return frozenset(ProjectAction)
    caps = set()
    is_manager = project.manager_id == actor.id
    if is_manager or _in_team(actor, project):
        caps.add(ProjectAction.VIEW)
    if is_manager:
        caps.update({ProjectAction.UPDATE, ProjectAction.DELETE, ProjectAction.CREATE_TASK})
    return frozenset(caps)


def task_capabilities(actor: User, task: Task) -> frozenset:
    is_assignee = task.assigned_to_id == actor.id
    is_creator = task.created_by_id == actor.id
    caps = set()
    if is_assignee:
        caps.update(ASSIGNEE_ONLY)
    if _is_admin(actor):
        caps.update(set(TaskAction) - ASSIGNEE_ONLY)
        return frozenset(caps)
    if is_assignee or is_creator:
        caps.update({
            TaskAction.VIEW,
            TaskAction.UPDATE,
            TaskAction.COMMENT,
            TaskAction.UPLOAD_FILE,
            TaskAction.DOWNLOAD_FILE,
        })
    if is_creator:
        caps.add(TaskAction.DELETE)
    project = task.project
    if project is not None and (project.manager_id == actor.id or _in_team(actor, project)):
        caps.add(TaskAction.COMMENT)
    return frozenset(caps)


def event_capabilities(actor: User, event: Event) -> frozenset:
    if _is_admin(actor) or event.created_by_id == actor.id:
        return frozenset(EventAction)
    if any(a.id == actor.id for a in event.attendees):
        return frozenset({EventAction.VIEW})
    return frozenset()


def check_task(actor: User, task: Task, action: TaskAction) -> Decision:
    if action in task_capabilities(actor, task):
        return ALLOW
    return deny(TASK_DENY_REASONS[action])


def check_project(actor: User, project: Project, action: ProjectAction) -> Decision:
    if action in project_capabilities(actor, project):
        return ALLOW
    return deny(PROJECT_DENY_REASONS[action])


def check_event(actor: User, event: Event, action: EventAction) -> Decision:
    if action in event_capabilities(actor, event):
        return ALLOW
    return deny(EVENT_DENY_REASONS[action])


def check_task_update_fields(actor: User, task: Task, fields: Iterable[str]) -> Decision:
    """Generic field edits: admin and assignee edit freely, the creator only the allow-list."""
    decision = check_task(actor, task, TaskAction.UPDATE)
    if not decision:
        return decision
    if _is_admin(actor) or task.assigned_to_id == actor.id:
        return ALLOW
    if set(fields) - CREATOR_EDITABLE_FIELDS:
        return deny("You can only update actual hours")
    return ALLOW


def check_attachment_delete(actor: User, task: Task, attachment: TaskAttachment) -> Decision:
    if attachment.uploaded_by_id == actor.id:
        return ALLOW
    if TaskAction.UPLOAD_FILE in task_capabilities(actor, task):
        return ALLOW
    return deny("Not authorized to delete this file")


def check_project_create(actor: User) -> Decision:
    if _is_admin(actor):
        return ALLOW
    return deny("Only admin can create projects")
