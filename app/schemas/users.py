from typing import Literal, Optional

from pydantic import EmailStr, Field

from .base import ApiModel, StrictApiModel


Role = Literal["admin", "employee"]


class CreateUserRequest(ApiModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
    role: Role = "employee"
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)


class UserUpdate(StrictApiModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)
    avatar: Optional[str] = Field(default=None, max_length=500)
    contact_number: Optional[str] = Field(default=None, max_length=50)
    room_number: Optional[str] = Field(default=None, max_length=50)


class TenantCreate(ApiModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6)
    contact_number: Optional[str] = Field(default=None, max_length=50)
    room_number: Optional[str] = Field(default=None, max_length=50)
    department: str = Field(default="General", max_length=100)
    position: str = Field(default="Tenant", max_length=100)


class TenantUpdate(StrictApiModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    contact_number: Optional[str] = Field(default=None, max_length=50)
    room_number: Optional[str] = Field(default=None, max_length=50)
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)
