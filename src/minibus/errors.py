from __future__ import annotations


class BookingAppError(Exception):
    """Base error; ``status_code`` is what the HTTP layer answers with."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        self.code = code
        super().__init__(self.message)


class ValidationError(BookingAppError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(BookingAppError):
    status_code = 404
    default_message = "Not found"


class UserNotFound(NotFoundError):
    default_message = "User not found"


class BookingNotFound(NotFoundError):
    default_message = "Booking not found"


class IssueNotFound(NotFoundError):
    default_message = "Issue not found"


class OverlapConflict(BookingAppError):
    status_code = 400
    default_message = "The selected period overlaps another booking"


class Forbidden(BookingAppError):
    status_code = 403
    default_message = "Forbidden"


class AuthError(BookingAppError):
    status_code = 401
    default_message = "Invalid token"


class InvalidOrExpiredPin(AuthError):
    default_message = "Invalid or expired PIN"


class DependencyError(BookingAppError):
    status_code = 500
    default_message = "Internal server error"


class WriteContentionError(DependencyError):
    """Conditional writes kept losing against concurrent writers."""
