"""Account lookups and lifecycle changes shared by the auth, admin and tenant routes."""
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, revoke_refresh_tokens
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import User
from .task_service import parse_id


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user_or_404(db: Session, user_id: Any) -> User:
    user = db.get(User, parse_id(user_id, "user id"))
    if not user:
        raise NotFoundError("User not found")
    return user


def ensure_email_free(db: Session, email: str, exclude_id: Optional[Any] = None) -> str:
    email = normalize_email(email)
    query = db.query(User).filter(User.email == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first():
        raise ConflictError("User with this email already exists")
    return email


def create_user(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    role: str = "employee",
    department: Optional[str] = None,
    position: Optional[str] = None,
    contact_number: Optional[str] = None,
    room_number: Optional[str] = None,
) -> User:
    user = User(
        name=name.strip(),
        email=ensure_email_free(db, email),
        password_hash=get_password_hash(password),
        role=role,
        status="active",
        department=department,
        position=position,
        contact_number=contact_number,
        room_number=room_number,
    )
    db.add(user)
    db.flush()
    return user


def deactivate_user(db: Session, user: User, actor: User) -> None:
    if user.id == actor.id:
        raise ValidationError("Cannot deactivate your own account")
    if user.status == "deleted":
        raise ValidationError("Account has been deleted")
    user.status = "inactive"
    revoke_refresh_tokens(db, user.id)


def activate_user(db: Session, user: User) -> None:
    if user.status == "deleted":
        raise ValidationError("Deleted accounts cannot be reactivated")
    user.status = "active"


def release_account(db: Session, user: User) -> None:
    """Soft delete: keep the row for history, free the e-mail for reuse."""
    if user.email:
        user.released_email = user.email
    user.email = None
    user.status = "deleted"
    revoke_refresh_tokens(db, user.id)


def ensure_bootstrap_admin(db: Session, email: Optional[str], password: Optional[str], name: str) -> Optional[User]:
    """Create the first admin from configuration when the workspace has none."""
    if not email or not password:
        return None
    if db.query(User).filter(User.role == "admin", User.status == "active").first():
        return None
    if db.query(User).filter(User.email == normalize_email(email)).first():
        return None
    return create_user(db, name=name, email=email, password=password, role="admin")
