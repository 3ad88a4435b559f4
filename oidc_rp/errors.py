"""
Error Taxonomy
==============

Every failure the relying party can hit while talking to the identity
provider or handling a session derives from ``AuthError``.

Each class carries a ``reason`` code. Reason codes are the only part of an
error that may leave the service (as ``?error=<reason>`` on a redirect);
messages and provider payloads are logged for operators and never returned
to the client.
"""

from typing import Optional


class AuthError(Exception):
    """Base exception for relying-party authentication errors"""

    reason = "authentication_failed"

    def __init__(self, message: str = "", reason: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        if reason is not None:
            self.reason = reason


class ConfigurationError(AuthError):
    """Missing/invalid environment or unreachable discovery document."""

    reason = "configuration_error"


# =============================================================================
# Callback request validation
# =============================================================================

class InvalidRequest(AuthError):
    """Callback is missing parameters or the persisted login context."""

    reason = "invalid_request"


class InvalidState(AuthError):
    """Callback state does not match the persisted state (CSRF suspect)."""

    # Same code as InvalidRequest so the client cannot tell the checks apart
    reason = "invalid_request"


# =============================================================================
# Upstream provider failures
# =============================================================================

class TokenExchangeError(AuthError):
    reason = "authentication_failed"


class UserInfoError(AuthError):
    reason = "authentication_failed"


class MissingEndpoint(AuthError):
    """Provider metadata lacks an endpoint the operation needs."""

    reason = "authentication_failed"


class IdTokenError(AuthError):
    reason = "authentication_failed"


# =============================================================================
# Sessions
# =============================================================================

class SessionError(AuthError):
    """A session token could not be minted."""

    reason = "session_error"


class SessionVerificationError(SessionError):
    """Malformed, expired or forged session token. Never surfaced to users."""

    reason = "invalid_session"


__all__ = [
    "AuthError",
    "ConfigurationError",
    "InvalidRequest",
    "InvalidState",
    "TokenExchangeError",
    "UserInfoError",
    "MissingEndpoint",
    "IdTokenError",
    "SessionError",
    "SessionVerificationError",
]
