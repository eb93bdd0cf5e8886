from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from .base import ApiModel, StrictApiModel, aware


EventType = Literal["meeting", "deadline", "reminder", "other"]


class EventCreate(ApiModel):
    title: str = Field(min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: datetime
    end_date: datetime
    all_day: bool = False
    type: EventType = "meeting"
    attendees: List[str] = Field(default_factory=list)
    color: Optional[str] = Field(default=None, max_length=20)
    project: Optional[str] = None
    task: Optional[str] = None

    @model_validator(mode="after")
    def _end_after_start(self):
        if aware(self.end_date) <= aware(self.start_date):
            raise ValueError("End date must be after start date")
        return self


class EventUpdate(StrictApiModel):
    title: Optional[str] = Field(default=None, min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    all_day: Optional[bool] = None
    type: Optional[EventType] = None
    attendees: Optional[List[str]] = None
    color: Optional[str] = Field(default=None, max_length=20)
    project: Optional[str] = None
    task: Optional[str] = None
