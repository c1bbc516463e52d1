"""
Error taxonomy for the PetCare API.

Every error raised from a handler derives from ``PetCareError`` and carries
the HTTP status it is rendered with. The handlers registered in
``petcare.main`` turn them into ``{"message": ..., "error": ...}`` bodies.
"""

from typing import Any, Optional

from fastapi import status


class PetCareError(Exception):
    """Base exception class for all API errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, error: Optional[Any] = None):
        self.message = message or self.default_message
        self.error = error
        super().__init__(self.message)

    def to_dict(self, include_error: bool = True) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message}
        if include_error and self.error is not None:
            body["error"] = self.error
        return body


class ValidationError(PetCareError):
    """Malformed or missing input."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class Unauthenticated(PetCareError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authorized, no token"


class AccountInactive(Unauthenticated):
    """Valid credential for an account that is no longer active."""

    default_message = "Account is not active"


class Forbidden(PetCareError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You do not have permission to perform this action"


class NotFound(PetCareError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class Conflict(PetCareError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class SlotConflict(Conflict):
    """The veterinarian already has a live appointment at that exact time."""

    default_message = "This time slot is already booked for the selected veterinarian"


class Internal(PetCareError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"
