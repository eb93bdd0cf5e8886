import mimetypes
import os
import secrets
import time

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import FileResponse
from slugify import slugify
from sqlalchemy.orm import Session
import structlog

from ..auth.security import get_current_user
from ..config import settings
from ..db import get_db
from ..errors import InternalError, NotFoundError, ValidationError
from ..models.models import TaskAttachment, User, utcnow
from ..services import task_service
from ..services.audit import create_audit_log
from ..services.permissions import TaskAction, check_attachment_delete, check_task, ensure
from ..services.serializers import attachment_to_dict
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider, UploadTooLarge


router = APIRouter(prefix="/files", tags=["files"])
logger = structlog.get_logger(__name__)


def get_storage() -> StorageProvider:
    return LocalStorageProvider()


def stored_name(original_name: str) -> str:
    """Unique on-disk name: slugified stem, millisecond stamp, random suffix, original extension."""
    stem, ext = os.path.splitext(original_name)
    safe = slugify(stem)[:60] or "file"
    return f"{safe}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext.lower()}"


def _check_extension(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower().lstrip(".")
    if ext not in settings.allowed_upload_extensions:
        raise ValidationError("Only images and documents are allowed")
    return ext


def public_url(name: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/uploads/{name}"


@router.post("/tasks/{task_id}/upload", status_code=status.HTTP_201_CREATED)
def upload_task_file(
    task_id: str,
    request: Request,
    file: UploadFile = File(None),
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    _check_extension(file.filename)
    task = task_service.get_task(db, task_id)
    ensure(check_task(me, task, TaskAction.UPLOAD_FILE))

    name = stored_name(file.filename)
    try:
        size = storage.save(file.file, name, max_bytes=settings.max_upload_bytes)
    except UploadTooLarge:
        raise ValidationError("File too large. Maximum size is 10MB")
    except OSError as e:
        logger.error("file_store_failed", task_id=task_id, file_name=file.filename, error=str(e))
        raise InternalError("Failed to store file")

    try:
        attachment = TaskAttachment(
            name=name,
            original_name=file.filename,
            url=public_url(name),
            size=size,
            mime_type=file.content_type or mimetypes.guess_type(file.filename)[0],
            uploaded_by_id=me.id,
            uploaded_at=utcnow(),
        )
        task.attachments.append(attachment)
        task_service.log_activity(task, "file_uploaded", me, {"fileName": file.filename, "fileSize": size})
        db.flush()
        create_audit_log(db, "FILE_UPLOAD", "Task", task.id, user_id=me.id, details={"fileName": file.filename}, request=request)
        db.commit()
    except Exception:
        db.rollback()
        storage.delete(name)
        logger.exception("file_upload_failed", task_id=task_id, file_name=file.filename)
        raise
    db.refresh(attachment)
    logger.info("file_uploaded", task_id=str(task.id), name=name, size=size)
    return {"message": "File uploaded successfully", "attachment": attachment_to_dict(attachment)}


@router.delete("/tasks/{task_id}/attachments/{attachment_id}")
def delete_task_file(
    task_id: str,
    attachment_id: str,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    task = task_service.get_task(db, task_id)
    wanted = task_service.parse_id(attachment_id, "attachment id")
    attachment = next((a for a in task.attachments if a.id == wanted), None)
    if attachment is None:
        raise NotFoundError("Attachment not found")
    ensure(check_attachment_delete(me, task, attachment))

    name, original_name = attachment.name, attachment.original_name
    task.attachments.remove(attachment)
    task_service.log_activity(task, "file_deleted", me, {"fileName": original_name})
    create_audit_log(db, "FILE_DELETE", "Task", task.id, user_id=me.id, details={"fileName": original_name}, request=request)
    db.commit()
    storage.delete(name)
    return {"message": "File deleted successfully"}


@router.get("/{filename}")
def get_file(
    filename: str,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    attachment = db.query(TaskAttachment).filter(TaskAttachment.name == filename).first()
    if attachment is None:
        raise NotFoundError("File not found")
    ensure(check_task(me, attachment.task, TaskAction.DOWNLOAD_FILE))
    path = storage.get_path(attachment.name)
    if path is None:
        raise NotFoundError("File not found on disk")
    return FileResponse(path, media_type=attachment.mime_type, filename=attachment.original_name)
