from pydantic import EmailStr, Field
from typing import Literal, Optional

from .base import ApiModel


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshRequest(ApiModel):
    refresh_token: str


class LogoutRequest(ApiModel):
    refresh_token: Optional[str] = None


class ForgotPasswordRequest(ApiModel):
    email: EmailStr


class ResetPasswordRequest(ApiModel):
    token: str
    password: str = Field(min_length=6)


class InviteUserRequest(ApiModel):
    email: EmailStr
    role: Literal["admin", "employee"] = "employee"
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)


class AcceptInviteRequest(ApiModel):
    token: str
    name: str = Field(min_length=2, max_length=100)
    password: str = Field(min_length=6)


class ProfileUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)
    position: Optional[str] = Field(default=None, max_length=100)
    avatar: Optional[str] = Field(default=None, max_length=500)
    contact_number: Optional[str] = Field(default=None, max_length=50)
    room_number: Optional[str] = Field(default=None, max_length=50)


class ChangePasswordRequest(ApiModel):
    current_password: str
    new_password: str = Field(min_length=6)
