"""Error taxonomy shared by the service layer and the HTTP surface.

Service functions raise these; ``main`` renders them as the JSON envelope
with the matching status code.
"""
from typing import Any, Optional


class ApiError(Exception):
    status_code = 500
    default_message = "Something went wrong!"

    def __init__(self, message: Optional[str] = None, error: Optional[Any] = None):
        self.message = message or self.default_message
        self.error = error
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Validation failed"


class AuthError(ApiError):
    status_code = 401
    default_message = "Invalid credentials"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "Admin access required"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Conflict"


class StoreError(ApiError):
    status_code = 500
    default_message = "Database error"
