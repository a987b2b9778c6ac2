"""
Service-level errors. main.py maps each class to its HTTP status.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(AppError):
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Already exists"


class RegistrationError(AppError):
    status_code = 500
    default_message = "Registration failed"


class StorageError(AppError):
    status_code = 502
    default_message = "File upload failed"


def duplicate_key_field(exc) -> str:
    """Best effort name of the field behind a pymongo DuplicateKeyError."""
    details = getattr(exc, "details", None) or {}
    pattern = details.get("keyPattern") or details.get("keyValue") or {}
    if pattern:
        return next(iter(pattern))
    text = str(exc)
    for field in ("email", "phone"):
        if field in text:
            return field
    return ""
