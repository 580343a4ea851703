"""
Error taxonomy for the API.

Every error carries the HTTP status it is rendered with, a message for the
``message`` field of the response envelope and an optional ``error`` detail.
"""

from typing import Optional


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error = error


class ValidationError(ApiError):
    status_code = 400


class ReferentialIntegrityError(ApiError):
    """Delete blocked because other rows still reference the record."""
    status_code = 400


class AuthenticationError(ApiError):
    status_code = 401


class TokenExpiredError(AuthenticationError):
    status_code = 401


class InvalidTokenError(AuthenticationError):
    status_code = 403


class ForbiddenError(AuthenticationError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class InternalError(ApiError):
    status_code = 500
