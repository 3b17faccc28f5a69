"""
Error taxonomy for the CineTalk API

Services raise these; main.py maps each one to a JSON response of the form
{"message": "..."} using the class-level status code.
"""
from typing import Any, Optional


class AppError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None, detail: Any = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid data"


class AuthError(AppError):
    status_code = 401
    default_message = "Not authorized"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    # Clients already treat duplicate registrations as a plain 400
    status_code = 400
    default_message = "Already exists"


class UpstreamError(AppError):
    status_code = 500
    default_message = "Error fetching data from the movie catalog"


class InternalError(AppError):
    status_code = 500
