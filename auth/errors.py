"""
auth/errors.py -- Error taxonomy for the sign-in and session flow.

Every class carries a stable machine-readable `code`. The route layer uses
it both for JSON error envelopes and as the ?error= reason on the callback
redirect, so raw exception text never reaches the browser.

Absent users and sessions are not errors: store lookups return None.
"""

__all__ = [
    "AuthError",
    "UpstreamAuthError",
    "ConfigurationError",
    "ValidationError",
]


class AuthError(Exception):
    """Base class for all auth-flow errors."""

    code: str = "auth_error"
    status_code: int = 500

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class UpstreamAuthError(AuthError):
    """The OAuth provider rejected the code, was unreachable, or returned no email.

    code is "no_email" when the identity lacks an email address; every other
    provider failure uses "oauth_failed".
    """

    code = "oauth_failed"
    status_code = 502


class ConfigurationError(AuthError):
    """Required configuration (database URL, OAuth client credentials) is missing."""

    code = "not_configured"
    status_code = 500


class ValidationError(AuthError):
    """Unknown action, wrong HTTP method for an action, or a missing parameter."""

    code = "invalid_request"
    status_code = 400
