"""
core/errors.py -- Application exception taxonomy.

Every failure a service or store wants to report to a client is raised as a
subclass of AppError. Each class carries the HTTP status and the machine-
readable code the API layer puts in the error envelope, so services never
import FastAPI and route handlers never build error bodies by hand.

api/main.py registers a single handler for AppError; anything that is not an
AppError falls through to the catch-all handler and becomes a generic 500.

Layer rule: no imports from api/, auth/, billing/, or projects/.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that are safe to show to API clients."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationError(AppError):
    """Bad or missing input."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request."


class AuthenticationError(AppError):
    """Missing, invalid, or expired credential."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class InvalidToken(AuthenticationError):
    code = "invalid_token"
    default_message = "Invalid token."


class ExpiredToken(AuthenticationError):
    code = "token_expired"
    default_message = "Token has expired."


class AuthorizationError(AppError):
    """Authenticated, but the role or plan does not allow the operation."""

    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class ConflictError(AppError):
    """Duplicate email, already-subscribed user, and similar state clashes.

    Reported as 400 rather than 409 to match what existing clients expect.
    """

    status_code = 400
    code = "conflict"
    default_message = "The request conflicts with the current state."


class SignatureError(AppError):
    """Webhook payload failed provider signature verification."""

    status_code = 400
    code = "invalid_signature"
    default_message = "Webhook signature verification failed."


class InternalError(AppError):
    status_code = 500
    code = "internal_error"
