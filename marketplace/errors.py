"""
Error Taxonomy
===============
Every error the API can report maps to one of these classes. Each carries
the HTTP status code the exception handlers in main.py render it with.

Rejected verifications are NOT errors: the Verification Engine returns a
structured "rejected" result. Only the LLM-backed paths raise, and they
raise ExternalServiceError.
"""


class MarketplaceError(Exception):
    """Base class for errors rendered as {"message": ...} responses."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    """Malformed or missing input fields."""
    status_code = 400


class AuthError(MarketplaceError):
    """Missing or invalid session."""
    status_code = 401


class ForbiddenError(MarketplaceError):
    """Authenticated, but not allowed to act on the target resource."""
    status_code = 403


class NotFoundError(MarketplaceError):
    status_code = 404


class ExternalServiceError(MarketplaceError):
    """
    The LLM call failed, timed out, or is not configured.

    The message is shown to clients, so it must never contain the API
    key or the raw upstream response body.
    """
    status_code = 500
