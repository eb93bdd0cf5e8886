"""Plain-dict renderings of the ORM rows, with user/project references populated."""
from datetime import datetime
from typing import Any, Dict, Optional

from ..models.models import (
    AuditLog,
    ChecklistItem,
    Event,
    Notification,
    Project,
    Task,
    TaskActivity,
    TaskAttachment,
    TaskComment,
    TimeSession,
    User,
    as_utc,
)


def iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def user_ref(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": str(user.id), "name": user.name, "email": user.email, "avatar": user.avatar}


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "status": user.status,
        "isActive": user.is_active,
        "department": user.department,
        "position": user.position,
        "avatar": user.avatar,
        "contactNumber": user.contact_number,
        "roomNumber": user.room_number,
        "lastLogin": iso(user.last_login_at),
        "createdAt": iso(user.created_at),
        "updatedAt": iso(user.updated_at),
    }


def project_ref(project: Optional[Project]) -> Optional[Dict[str, Any]]:
    if project is None:
        return None
    return {"id": str(project.id), "name": project.name, "status": project.status, "priority": project.priority}


def project_to_dict(project: Project, include_tasks: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(project.id),
        "name": project.name,
        "description": project.description,
        "status": project.status,
        "priority": project.priority,
        "startDate": iso(project.start_date),
        "endDate": iso(project.end_date),
        "budget": project.budget,
        "manager": user_ref(project.manager),
        "createdBy": user_ref(project.created_by),
        "team": [user_ref(u) for u in project.team],
        "tags": project.tags or [],
        "progress": project.progress or 0,
        "isArchived": bool(project.is_archived),
        "taskCount": len(project.tasks),
        "createdAt": iso(project.created_at),
        "updatedAt": iso(project.updated_at),
    }
    if include_tasks:
        data["tasks"] = [task_to_dict(t) for t in project.tasks]
    else:
        data["tasks"] = [str(t.id) for t in project.tasks]
    return data


def checklist_item_to_dict(item: ChecklistItem) -> Dict[str, Any]:
    return {
        "id": str(item.id),
        "text": item.text,
        "completed": bool(item.completed),
        "completedBy": user_ref(item.completed_by),
        "completedAt": iso(item.completed_at),
        "createdBy": user_ref(item.created_by),
        "createdAt": iso(item.created_at),
        "order": item.order,
    }


def attachment_to_dict(attachment: TaskAttachment) -> Dict[str, Any]:
    return {
        "id": str(attachment.id),
        "name": attachment.name,
        "originalName": attachment.original_name,
        "url": attachment.url,
        "size": attachment.size,
        "mimeType": attachment.mime_type,
        "uploadedBy": user_ref(attachment.uploaded_by),
        "uploadedAt": iso(attachment.uploaded_at),
    }


def comment_to_dict(comment: TaskComment) -> Dict[str, Any]:
    return {
        "id": str(comment.id),
        "user": user_ref(comment.user),
        "text": comment.text,
        "mentions": [user_ref(u) for u in comment.mentions],
        "createdAt": iso(comment.created_at),
    }


def activity_to_dict(entry: TaskActivity) -> Dict[str, Any]:
    return {
        "id": str(entry.id),
        "action": entry.action,
        "user": user_ref(entry.user),
        "details": entry.details or {},
        "timestamp": iso(entry.timestamp),
    }


def time_session_to_dict(session: TimeSession) -> Dict[str, Any]:
    return {
        "id": str(session.id),
        "user": user_ref(session.user),
        "startTime": iso(session.start_time),
        "endTime": iso(session.end_time),
        "duration": session.duration,
        "description": session.description,
    }


def task_to_dict(task: Task, detail: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(task.id),
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "project": project_ref(task.project),
        "assignedTo": user_ref(task.assigned_to),
        "createdBy": user_ref(task.created_by),
        "dueDate": iso(task.due_date),
        "estimatedHours": task.estimated_hours or 0,
        "actualHours": task.actual_hours or 0,
        "tags": task.tags or [],
        "isAccepted": bool(task.is_accepted),
        "acceptedAt": iso(task.accepted_at),
        "completedAt": iso(task.completed_at),
        "createdAt": iso(task.created_at),
        "updatedAt": iso(task.updated_at),
        "isOverdue": task.is_overdue,
        "checklistProgress": task.checklist_progress,
        "timeEfficiency": task.time_efficiency,
        "totalSessionTime": task.total_session_time,
        "checklist": [checklist_item_to_dict(i) for i in task.checklist],
        "attachments": [attachment_to_dict(a) for a in task.attachments],
        "commentCount": len(task.comments),
    }
    if detail:
        data["comments"] = [comment_to_dict(c) for c in task.comments]
        data["activityLog"] = [activity_to_dict(a) for a in task.activity_log]
        data["timeSessions"] = [time_session_to_dict(s) for s in task.time_sessions]
    return data


def event_to_dict(event: Event) -> Dict[str, Any]:
    return {
        "id": str(event.id),
        "title": event.title,
        "description": event.description,
        "startDate": iso(event.start_date),
        "endDate": iso(event.end_date),
        "allDay": bool(event.all_day),
        "type": event.type,
        "color": event.color,
        "attendees": [user_ref(u) for u in event.attendees],
        "createdBy": user_ref(event.created_by),
        "project": project_ref(event.project),
        "task": {"id": str(event.task.id), "title": event.task.title} if event.task else None,
        "createdAt": iso(event.created_at),
        "updatedAt": iso(event.updated_at),
    }


def notification_to_dict(notification: Notification) -> Dict[str, Any]:
    return {
        "id": str(notification.id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "isRead": bool(notification.is_read),
        "readAt": iso(notification.read_at),
        "createdAt": iso(notification.created_at),
    }


def audit_log_to_dict(entry: AuditLog) -> Dict[str, Any]:
    return {
        "id": str(entry.id),
        "userId": str(entry.user_id) if entry.user_id else None,
        "action": entry.action,
        "resource": entry.resource,
        "resourceId": entry.resource_id,
        "details": entry.details or {},
        "ipAddress": entry.ip_address,
        "userAgent": entry.user_agent,
        "timestamp": iso(entry.timestamp),
    }
