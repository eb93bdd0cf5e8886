import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ..db import get_db
from ..config import settings
from ..errors import AuthenticationError, AuthorizationError, ConflictError, ValidationError
from ..models.models import User, Invite, PasswordReset, RefreshToken, as_utc, utcnow
from ..rate_limit import limiter
from ..schemas.base import ApiModel
from ..schemas.auth import (
    LoginRequest,
    RefreshRequest,
    LogoutRequest,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    InviteUserRequest,
    AcceptInviteRequest,
    ProfileUpdate,
    ChangePasswordRequest,
)
from ..services.audit import create_audit_log
from ..services.email import send_invite_email, send_password_reset_email
from ..services.serializers import user_to_dict
from ..services.users import normalize_email, release_account
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    issue_refresh_token,
    revoke_refresh_tokens,
    get_current_user,
    require_admin,
)
import structlog


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)

RESET_REQUESTED_MESSAGE = "If an account exists, a reset email has been sent"


class DeleteAccountRequest(ApiModel):
    password: str


def _token_pair(db: Session, user: User) -> dict:
    return {
        "accessToken": create_access_token(str(user.id), user.role),
        "refreshToken": issue_refresh_token(db, user),
    }


@router.post("/login")
@limiter.limit(settings.auth_rate_limit)
def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == normalize_email(body.email)).first()
    if not user or not verify_password(body.password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        raise AuthorizationError("Account is deactivated")
    user.last_login_at = utcnow()
    tokens = _token_pair(db, user)
    create_audit_log(db, "LOGIN", "Auth", user.id, user_id=user.id, request=request)
    db.commit()
    db.refresh(user)
    logger.info("user_login", user_id=str(user.id))
    return {"message": "Login successful", **tokens, "user": user_to_dict(user)}


@router.post("/refresh")
def refresh(body: RefreshRequest, db: Session = Depends(get_db)):
    record: Optional[RefreshToken] = (
        db.query(RefreshToken)
        .filter(RefreshToken.token == body.refresh_token, RefreshToken.is_active.is_(True))
        .first()
    )
    if not record or as_utc(record.expires_at) < utcnow():
        raise AuthenticationError("Invalid refresh token")
    user = db.get(User, record.user_id)
    if not user or not user.is_active:
        raise AuthorizationError("User account is deactivated")
    return {"accessToken": create_access_token(str(user.id), user.role), "user": user_to_dict(user)}


@router.post("/forgot-password")
@limiter.limit(settings.auth_rate_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest, db: Session = Depends(get_db)):
    # Same answer whether or not the account exists
    user = db.query(User).filter(User.email == normalize_email(body.email)).first()
    if not user or not user.is_active:
        return {"message": RESET_REQUESTED_MESSAGE}
    now = utcnow()
    db.query(PasswordReset).filter(
        PasswordReset.user_id == user.id, PasswordReset.used_at.is_(None)
    ).update({PasswordReset.used_at: now}, synchronize_session=False)
    token = secrets.token_hex(32)
    db.add(
        PasswordReset(
            user_id=user.id,
            token=token,
            expires_at=now + timedelta(seconds=settings.password_reset_ttl_seconds),
        )
    )
    db.commit()
    send_password_reset_email(user.email, token)
    return {"message": RESET_REQUESTED_MESSAGE}


@router.post("/reset-password")
@limiter.limit(settings.auth_rate_limit)
def reset_password(request: Request, body: ResetPasswordRequest, db: Session = Depends(get_db)):
    reset = db.query(PasswordReset).filter(PasswordReset.token == body.token).first()
    if not reset or reset.used_at is not None or as_utc(reset.expires_at) < utcnow():
        raise ValidationError("Invalid or expired reset token")
    user = db.get(User, reset.user_id)
    if not user or not user.is_active:
        raise ValidationError("Invalid or expired reset token")
    user.password_hash = get_password_hash(body.password)
    reset.used_at = utcnow()
    revoke_refresh_tokens(db, user.id)
    create_audit_log(db, "PASSWORD_RESET", "User", user.id, user_id=user.id, request=request)
    db.commit()
    return {"message": "Password reset successful"}


@router.post("/invite-user", status_code=status.HTTP_201_CREATED)
def invite_user(
    body: InviteUserRequest,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    email = normalize_email(body.email)
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("User with this email already exists")
    now = utcnow()
    pending = (
        db.query(Invite)
        .filter(Invite.email == email, Invite.accepted_at.is_(None))
        .all()
    )
    if any(as_utc(inv.expires_at) > now for inv in pending):
        raise ConflictError("Invitation already sent to this email")
    token = secrets.token_hex(32)
    db.add(
        Invite(
            email=email,
            token=token,
            role=body.role,
            department=body.department,
            position=body.position,
            invited_by_id=admin.id,
            expires_at=now + timedelta(seconds=settings.invite_ttl_seconds),
        )
    )
    create_audit_log(db, "USER_INVITE", "User", None, user_id=admin.id, details={"email": email, "role": body.role}, request=request)
    db.commit()
    send_invite_email(email, token, admin.name)
    result = {"message": "User invitation sent successfully"}
    # Outside development the token only travels by e-mail
    if settings.is_development:
        result["inviteToken"] = token
    return result


@router.post("/accept-invite", status_code=status.HTTP_201_CREATED)
def accept_invite(body: AcceptInviteRequest, request: Request, db: Session = Depends(get_db)):
    invite = db.query(Invite).filter(Invite.token == body.token).first()
    if not invite or invite.accepted_at is not None or as_utc(invite.expires_at) < utcnow():
        raise ValidationError("Invalid or expired invitation")
    if db.query(User).filter(User.email == invite.email).first():
        raise ConflictError("User already exists")
    user = User(
        name=body.name,
        email=invite.email,
        password_hash=get_password_hash(body.password),
        role=invite.role or "employee",
        status="active",
        department=invite.department,
        position=invite.position,
        last_login_at=utcnow(),
    )
    db.add(user)
    invite.accepted_at = utcnow()
    db.flush()
    tokens = _token_pair(db, user)
    create_audit_log(db, "USER_CREATE", "User", user.id, user_id=user.id, details={"viaInvite": True}, request=request)
    db.commit()
    db.refresh(user)
    return {"message": "Account created successfully", **tokens, "user": user_to_dict(user)}


@router.get("/profile")
def get_profile(me: User = Depends(get_current_user)):
    return {"user": user_to_dict(me)}


@router.put("/profile")
def update_profile(body: ProfileUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(me, field, value)
    db.commit()
    db.refresh(me)
    return {"message": "Profile updated", "user": user_to_dict(me)}


@router.put("/change-password")
def change_password(
    body: ChangePasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if not verify_password(body.current_password, me.password_hash):
        raise ValidationError("Current password is incorrect")
    me.password_hash = get_password_hash(body.new_password)
    revoke_refresh_tokens(db, me.id)
    create_audit_log(db, "PASSWORD_CHANGE", "User", me.id, user_id=me.id, request=request)
    db.commit()
    return {"message": "Password changed successfully"}


@router.get("/verify")
def verify(me: User = Depends(get_current_user)):
    return {"valid": True, "user": user_to_dict(me)}


@router.post("/logout")
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if body and body.refresh_token:
        db.query(RefreshToken).filter(
            RefreshToken.token == body.refresh_token, RefreshToken.user_id == me.id
        ).update({RefreshToken.is_active: False}, synchronize_session=False)
    else:
        revoke_refresh_tokens(db, me.id)
    create_audit_log(db, "LOGOUT", "Auth", me.id, user_id=me.id, request=request)
    db.commit()
    return {"message": "Logout successful"}


@router.delete("/account")
def delete_account(
    body: DeleteAccountRequest,
    request: Request,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if not verify_password(body.password, me.password_hash):
        raise ValidationError("Incorrect password")
    release_account(db, me)
    create_audit_log(db, "USER_DEACTIVATE", "User", me.id, user_id=me.id, details={"selfDeleted": True}, request=request)
    db.commit()
    return {"message": "Account deleted successfully"}

