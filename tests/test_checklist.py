import pytest

from app.errors import AuthorizationError, NotFoundError, ValidationError
from app.services import task_service


def _texts(task):
    return [item.text for item in task.checklist]


def test_empty_checklist_is_zero_percent(task):
    assert task.checklist_progress == 0


def test_all_items_done_is_hundred_percent(db_session, task, employee):
    task_service.replace_checklist(
        db_session, task, employee, [{"text": "a", "completed": True}, {"text": "b", "completed": True}]
    )
    assert task.checklist_progress == 100


def test_replace_keeps_completion_stamp_when_flag_unchanged(db_session, task, employee):
    items = task_service.replace_checklist(
        db_session, task, employee, [{"text": "Draft", "completed": True}, {"text": "Review"}]
    )
    db_session.commit()
    draft = items[0]
    stamped_at, stamped_by = draft.completed_at, draft.completed_by_id
    assert stamped_at is not None

    task_service.replace_checklist(
        db_session,
        task,
        employee,
        [
            {"id": str(draft.id), "text": "Draft", "completed": True},
            {"id": str(items[1].id), "text": "Review", "completed": True},
        ],
    )
    db_session.commit()
    assert draft.completed_at == stamped_at
    assert draft.completed_by_id == stamped_by
    assert task.checklist_progress == 100


def test_unchecking_clears_stamp(db_session, task, employee):
    item = task_service.add_checklist_item(db_session, task, employee, "Ship", completed=True)
    assert item.completed_by_id == employee.id
    task_service.update_checklist_item(db_session, task, employee, item.id, completed=False)
    assert item.completed_at is None
    assert item.completed_by_id is None


def test_replace_drops_missing_items(db_session, task, employee):
    task_service.replace_checklist(db_session, task, employee, [{"text": "one"}, {"text": "two"}])
    db_session.commit()
    keep = task.checklist[1]
    task_service.replace_checklist(db_session, task, employee, [{"id": str(keep.id), "text": "two"}])
    db_session.commit()
    assert _texts(task) == ["two"]
    assert task.checklist[0].id == keep.id


def test_per_item_operations(db_session, task, employee):
    a = task_service.add_checklist_item(db_session, task, employee, "a")
    b = task_service.add_checklist_item(db_session, task, employee, "b")
    c = task_service.add_checklist_item(db_session, task, employee, "c")
    db_session.commit()
    assert [i.order for i in task.checklist] == [0, 1, 2]

    task_service.reorder_checklist(db_session, task, employee, [c.id, a.id, b.id])
    db_session.commit()
    db_session.refresh(task)
    assert _texts(task) == ["c", "a", "b"]

    task_service.remove_checklist_item(db_session, task, employee, a.id)
    db_session.commit()
    assert _texts(task) == ["c", "b"]
    assert [i.order for i in task.checklist] == [0, 1]


def test_reorder_must_list_every_item(db_session, task, employee):
    a = task_service.add_checklist_item(db_session, task, employee, "a")
    task_service.add_checklist_item(db_session, task, employee, "b")
    with pytest.raises(ValidationError):
        task_service.reorder_checklist(db_session, task, employee, [a.id])


def test_item_text_validation(db_session, task, employee):
    with pytest.raises(ValidationError):
        task_service.add_checklist_item(db_session, task, employee, "   ")
    with pytest.raises(ValidationError):
        task_service.add_checklist_item(db_session, task, employee, "x" * 201)


def test_unknown_item(db_session, task, employee):
    import uuid

    with pytest.raises(NotFoundError):
        task_service.update_checklist_item(db_session, task, employee, uuid.uuid4(), completed=True)


def test_only_assignee_edits_checklist(db_session, task, admin):
    with pytest.raises(AuthorizationError) as exc:
        task_service.add_checklist_item(db_session, task, admin, "nope")
    assert exc.value.message == "Only assigned user can update checklist"
