import io
import os

from app.config import settings
from app.main import app
from app.models.models import TaskAttachment
from app.routes.files import get_storage
from app.storage.local_provider import LocalStorageProvider


def _upload(client, headers, task, user, name="notes.txt", content=b"hello world", content_type="text/plain"):
    return client.post(
        f"/files/tasks/{task.id}/upload",
        files={"file": (name, io.BytesIO(content), content_type)},
        headers=headers(user),
    )


def test_upload_and_download(client, headers, db_session, task, employee):
    resp = _upload(client, headers, task, employee)
    assert resp.status_code == 201, resp.text
    attachment = resp.json()["attachment"]
    assert attachment["originalName"] == "notes.txt"
    assert attachment["size"] == len(b"hello world")
    assert attachment["url"] == f"{settings.public_base_url}/uploads/{attachment['name']}"
    assert os.path.exists(os.path.join(settings.upload_dir, attachment["name"]))

    resp = client.get(f"/files/{attachment['name']}", headers=headers(employee))
    assert resp.status_code == 200
    assert resp.content == b"hello world"

    actions = [a["action"] for a in client.get(f"/tasks/{task.id}/activity", headers=headers(employee)).json()["activityLog"]]
    assert "file_uploaded" in actions


def test_extension_allow_list(client, headers, task, employee):
    resp = _upload(client, headers, task, employee, name="run.exe", content_type="application/octet-stream")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Only images and documents are allowed"


def test_size_limit_leaves_nothing_behind(client, headers, db_session, task, employee, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_bytes", 8)
    before = set(os.listdir(settings.upload_dir))
    resp = _upload(client, headers, task, employee, content=b"0123456789")
    assert resp.status_code == 400
    assert set(os.listdir(settings.upload_dir)) == before
    assert db_session.query(TaskAttachment).count() == 0


def test_outsider_cannot_upload_or_download(client, headers, task, employee, other_employee):
    resp = _upload(client, headers, task, other_employee)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Not authorized to upload files to this task"

    name = _upload(client, headers, task, employee).json()["attachment"]["name"]
    assert client.get(f"/files/{name}", headers=headers(other_employee)).status_code == 403


def test_delete_attachment(client, headers, db_session, task, employee, admin):
    attachment = _upload(client, headers, task, employee, name="plan.pdf", content_type="application/pdf").json()["attachment"]
    path = os.path.join(settings.upload_dir, attachment["name"])
    resp = client.delete(f"/files/tasks/{task.id}/attachments/{attachment['id']}", headers=headers(admin))
    assert resp.status_code == 200
    assert not os.path.exists(path)
    assert db_session.query(TaskAttachment).count() == 0
    assert client.get(f"/files/{attachment['name']}", headers=headers(admin)).status_code == 404


def test_unknown_attachment(client, headers, task, admin):
    resp = client.delete(
        f"/files/tasks/{task.id}/attachments/00000000-0000-0000-0000-000000000000", headers=headers(admin)
    )
    assert resp.status_code == 404


class _FullDisk(LocalStorageProvider):
    def save(self, stream, key, max_bytes=None):
        raise OSError(28, "No space left on device")


def test_storage_failure_is_reported(client, headers, db_session, task, employee):
    app.dependency_overrides[get_storage] = lambda: _FullDisk()
    try:
        resp = _upload(client, headers, task, employee)
    finally:
        app.dependency_overrides.pop(get_storage, None)
    assert resp.status_code == 500
    assert resp.json() == {"message": "Failed to store file"}
    assert db_session.query(TaskAttachment).count() == 0
