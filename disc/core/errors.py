"""Request-level error kinds.

Every error here is rendered as `{"message": ...}` with its status code by the
exception handlers in `disc.api.server`. None of them are retried.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DiscError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        return {"message": self.message}


class AuthenticationError(DiscError):
    """Bad credentials. Unknown user and wrong password are indistinguishable."""

    status_code = 401
    default_message = "Invalid credentials"


class NotAuthenticatedError(DiscError):
    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(DiscError):
    status_code = 403
    default_message = "Access denied. Admin privileges required."


class ValidationFailedError(DiscError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, errors: List[Dict[str, str]], message: Optional[str] = None) -> None:
        super().__init__(message)
        self.errors = errors

    def to_body(self) -> Dict[str, Any]:
        return {"message": self.message, "errors": self.errors}


class DuplicateUsernameError(DiscError):
    status_code = 400
    default_message = "Username already exists"


class NotFoundError(DiscError):
    status_code = 404
    default_message = "Not found"


class ReauthRequiredError(DiscError):
    """Stored third-party access expired and cannot be refreshed."""

    status_code = 401
    default_message = "Spotify access expired, please reconnect your account"


class UpstreamError(DiscError):
    """An external API call failed. The message is opaque; the cause is logged."""

    status_code = 500
    default_message = "Upstream service error"


class ServiceUnavailableError(DiscError):
    status_code = 503
    default_message = "Service not configured"
