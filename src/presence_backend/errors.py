"""
Error types for the Presence Backend.

Every error carries the HTTP status the API layer answers with; ``type`` is
the class name and ends up in the error envelope.
"""


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def type(self) -> str:
        return self.__class__.__name__


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found"


class BadRequestError(AppError):
    status_code = 400
    default_message = "Bad request"


class ValidationFailed(AppError):
    status_code = 422
    default_message = "Validation failed"

    def __init__(self, message: str = None, errors: list = None):
        super().__init__(message)
        self.errors = errors or []


# ============== Directory / Enrollment ==============

class PersonNotFound(NotFoundError):
    default_message = "User not found"


class ClassNotFound(NotFoundError):
    default_message = "Class not found"


class DuplicateEmail(BadRequestError):
    default_message = "Email is already registered"


# ============== Attendance ==============

class NotCheckedIn(BadRequestError):
    """Check-out attempted on a day without a check-in."""

    default_message = "Cannot check out before checking in today"


class AttendanceConflict(Exception):
    """Another request already created the record for this person and day."""


# ============== Recognition Service ==============

class NoMatch(NotFoundError):
    """The recognition service could not identify anyone in the image."""

    default_message = "User not found"


class RecognitionUnavailable(BadRequestError):
    """The recognition service timed out, was unreachable or answered garbage."""

    default_message = "Face recognition service unavailable"
