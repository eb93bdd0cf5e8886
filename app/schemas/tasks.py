from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field

from .base import ApiModel, StrictApiModel


Priority = Literal["low", "medium", "high", "urgent"]


class TaskCreate(ApiModel):
    title: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    project: str
    assigned_to: str
    due_date: Optional[datetime] = None
    priority: Priority = "medium"
    estimated_hours: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    tags: List[str] = Field(default_factory=list)


class TaskUpdate(StrictApiModel):
    """PUT body. Status is not accepted here; it moves through PATCH /status."""

    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    actual_hours: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    tags: Optional[List[str]] = None
    project: Optional[str] = None
    assigned_to: Optional[str] = None

    def changes(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if "project" in data:
            data["project_id"] = data.pop("project")
        if "assigned_to" in data:
            data["assigned_to_id"] = data.pop("assigned_to")
        return data


class StatusUpdate(ApiModel):
    status: str


class TimeLog(ApiModel):
    hours_to_add: float = Field(
        allow_inf_nan=False, validation_alias=AliasChoices("hoursToAdd", "hours_to_add", "hours")
    )


class TimeSessionCreate(ApiModel):
    start_time: datetime
    end_time: datetime
    description: Optional[str] = Field(default=None, max_length=200)


class ChecklistItemIn(ApiModel):
    id: Optional[str] = None
    text: str
    completed: bool = False


class ChecklistReplace(ApiModel):
    checklist_items: List[ChecklistItemIn]


class ChecklistItemCreate(ApiModel):
    text: str
    completed: bool = False


class ChecklistItemUpdate(ApiModel):
    text: Optional[str] = None
    completed: Optional[bool] = None


class ChecklistReorder(ApiModel):
    item_ids: List[str]


class CommentCreate(ApiModel):
    text: str = Field(min_length=1, max_length=500)
