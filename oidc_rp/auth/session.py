"""
Session Token Management Module
===============================

Serializes session records into signed, time-bound tokens held by the
client in a cookie, and verifies them on every request.

- Signing uses one fixed algorithm (HS256) and a configured secret
- The token's ``exp`` claim always equals the record's provider-asserted
  expiry, so an expired session cannot be replayed even if a caller skips
  its own expiry check
- Verification never raises: callers get a negative result and must treat
  "no session" and "invalid session" the same way
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import jwt
from fastapi import Request, Response
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from pydantic import ValidationError

from oidc_rp.config import Settings
from oidc_rp.errors import SessionError, SessionVerificationError
from oidc_rp.models import SessionRecord, UserIdentity

logger = logging.getLogger(__name__)

SESSION_ALGORITHM = "HS256"


# =============================================================================
# Verification Result
# =============================================================================

@dataclass(frozen=True)
class ValidSession:
    record: SessionRecord


@dataclass(frozen=True)
class InvalidSession:
    reason: str


SessionResult = Union[ValidSession, InvalidSession]


# =============================================================================
# Codec
# =============================================================================

class SessionCodec:
    """
    Encode and verify session tokens.

    Args:
        secret: Symmetric signing secret
        issuer: ``iss`` claim written to and required on every token
        clock: Source of the current epoch time
    """

    def __init__(
        self,
        secret: str,
        issuer: str = "oidc-relying-party",
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise SessionError("Session signing secret is empty")
        self._secret = secret
        self.issuer = issuer
        self._clock = clock

    def encode(self, record: SessionRecord) -> str:
        """
        Sign a session record.

        Args:
            record: Session to serialize; ``user.sub`` is required

        Returns:
            Encoded JWT string

        Raises:
            SessionError: If the record has no subject or signing fails
        """
        if not record.user.sub:
            raise SessionError("Missing required claim: 'sub' (subject/user ID)")

        payload: Dict[str, Any] = {
            "sub": record.user.sub,
            "user": record.user.model_dump(),
            "access_token": record.access_token,
            "expires_at": record.expires_at,
            "iat": record.issued_at,
            "exp": record.expires_at,
            "iss": self.issuer,
        }
        if record.id_token:
            payload["id_token"] = record.id_token

        try:
            token = jwt.encode(payload, self._secret, algorithm=SESSION_ALGORITHM)
        except Exception as e:
            logger.error(f"Failed to create session token: {e}", exc_info=True)
            raise SessionError("Failed to create session token") from e

        logger.debug(
            "Created session token",
            extra={"user_id": record.user.sub, "expires_at": record.expires_at},
        )
        return token

    def verify(self, token: Optional[str]) -> SessionResult:
        """
        Verify signature, issuer and expiry of a session token in one step.

        Returns:
            ValidSession with the decoded record, or InvalidSession with a
            reason suitable for logs only
        """
        if not token or not isinstance(token, str):
            return InvalidSession("missing")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[SESSION_ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub", "iss"]},
            )
        except ExpiredSignatureError:
            return InvalidSession("expired")
        except InvalidTokenError as e:
            return InvalidSession(f"invalid: {type(e).__name__}")

        try:
            record = SessionRecord(
                user=UserIdentity.model_validate(claims.get("user") or {}),
                access_token=claims.get("access_token"),
                id_token=claims.get("id_token"),
                expires_at=claims.get("expires_at"),
                issued_at=claims.get("iat"),
            )
        except ValidationError:
            return InvalidSession("malformed")

        if record.user.sub != claims["sub"] or record.expires_at != claims["exp"]:
            return InvalidSession("inconsistent")

        if record.is_expired(self._clock()):
            return InvalidSession("expired")

        return ValidSession(record)

    def decode(self, token: Optional[str]) -> Optional[SessionRecord]:
        """
        Decode a session token.

        Returns:
            The SessionRecord, or None for a missing, malformed, forged or
            expired token
        """
        result = self.verify(token)
        if isinstance(result, ValidSession):
            return result.record

        logger.debug("Session token rejected", extra={"reason": result.reason})
        return None

    def require(self, token: Optional[str]) -> SessionRecord:
        """
        Decode a session token that must be valid.

        Raises:
            SessionVerificationError: For a missing, malformed, forged or expired token
        """
        result = self.verify(token)
        if isinstance(result, InvalidSession):
            raise SessionVerificationError(f"Session rejected: {result.reason}")
        return result.record


# =============================================================================
# Cookie Helpers
# =============================================================================

def set_session_cookie(
    response: Response,
    token: str,
    record: SessionRecord,
    settings: Settings,
    now: Optional[float] = None,
) -> None:
    """Store the session token; the cookie lives exactly as long as the session."""
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=record.seconds_remaining(now),
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def get_optional_session(request: Request) -> Optional[SessionRecord]:
    """
    FastAPI dependency returning the current session, or None.

    Usage:
        @router.get("/")
        async def route(session: Optional[SessionRecord] = Depends(get_optional_session)):
            ...
    """
    codec: SessionCodec = request.app.state.session_codec
    settings: Settings = request.app.state.settings

    return codec.decode(request.cookies.get(settings.SESSION_COOKIE_NAME))


def require_session(request: Request) -> SessionRecord:
    """
    FastAPI dependency that re-validates the session inline.

    Raises:
        SessionVerificationError: If the session is absent, invalid or expired;
            the application maps it to a 401 JSON response
    """
    codec: SessionCodec = request.app.state.session_codec
    settings: Settings = request.app.state.settings

    try:
        return codec.require(request.cookies.get(settings.SESSION_COOKIE_NAME))
    except SessionVerificationError as e:
        logger.debug(str(e), extra={"path": request.url.path})
        raise


__all__ = [
    "SESSION_ALGORITHM",
    "SessionCodec",
    "SessionResult",
    "ValidSession",
    "InvalidSession",
    "set_session_cookie",
    "clear_session_cookie",
    "get_optional_session",
    "require_session",
]
