"""
Error taxonomy shared by the services and the route layer.

Every service raises one of these; ``main.py`` turns them into
``{"message": ...}`` responses with the matching status code.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message=None, status_code=None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(AppError):
    status_code = 401
    default_message = "Authentication required"


class Forbidden(AppError):
    status_code = 403
    default_message = "Not authorized"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Conflict(AppError):
    status_code = 400
    default_message = "Already exists"


class InternalError(AppError):
    status_code = 500
    default_message = "Server error"


class InvalidCredentials(AppError):
    status_code = 401
    default_message = "Invalid credentials"


class InvalidOrExpiredToken(AppError):
    status_code = 400
    default_message = "Invalid or expired token"


class InvalidRating(ValidationError):
    default_message = "Rating must be between 1 and 5"


class InvalidStatus(ValidationError):
    default_message = "Invalid status"
