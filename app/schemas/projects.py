from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from .base import ApiModel, StrictApiModel, aware


ProjectStatus = Literal["planning", "active", "on-hold", "completed", "cancelled"]
Priority = Literal["low", "medium", "high", "urgent"]


class ProjectCreate(ApiModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: ProjectStatus = "planning"
    priority: Priority = "medium"
    start_date: datetime
    end_date: datetime
    budget: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    manager: Optional[str] = None
    team: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _end_after_start(self):
        if aware(self.end_date) <= aware(self.start_date):
            raise ValueError("End date must be after start date")
        return self


class ProjectUpdate(StrictApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[ProjectStatus] = None
    priority: Optional[Priority] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    budget: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    manager: Optional[str] = None
    team: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    is_archived: Optional[bool] = None
