"""Error taxonomy shared by services and routes.

Services raise these typed errors; the handlers registered in ``create_app``
turn them into the ``{"message": ..., "errors": [...]}`` envelope.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[list[Any]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)

    def to_body(self) -> dict:
        body: dict[str, Any] = {"message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation error"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(AppError):
    # Duplicates and repeated one-shot transitions surface as plain 400s
    status_code = 400
    default_message = "Conflict"



class InternalError(AppError):
    status_code = 500
    default_message = "Internal server error"
