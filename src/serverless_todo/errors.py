"""
Error taxonomy shared by the service, the store adapters and both HTTP surfaces.

Every error carries the HTTP status it maps to and the message a client may
see. Server-side faults (status 500) never expose their message; the
boundaries log them and answer with a generic body instead.
"""
from __future__ import annotations

from typing import Optional


# PUBLIC_INTERFACE
class TodoError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    default_message: str = "internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        """Message that is safe to return to a client."""
        if self.status_code >= 500:
            return TodoError.default_message
        return self.message


class ValidationError(TodoError):
    status_code = 400
    default_message = "invalid request"


class InvalidJSONError(ValidationError):
    default_message = "invalid JSON"


class CursorDecodeError(ValidationError):
    default_message = "invalid cursor"


class UnauthorizedError(TodoError):
    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(TodoError):
    status_code = 404
    default_message = "not found"


class RouteNotFoundError(TodoError):
    status_code = 404
    default_message = "route not found"


class StoreError(TodoError):
    """Backing store fault other than a failed existence check."""

    default_message = "store operation failed"


class SchedulingError(TodoError):
    """Registering a deferred aging task failed. Never fails the parent operation."""

    default_message = "failed to schedule aging task"


class AgingCallbackError(TodoError):
    """
    Marking a todo as aged failed.

    Raised to the queue consumer so the message is not acknowledged and the
    queue redelivers it.
    """

    default_message = "failed to mark todo as aged"
