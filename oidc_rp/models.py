"""
Data Models Module

This module defines the Pydantic models that flow through the login
and session lifecycle:

- Provider metadata (cached discovery document)
- Authorization request context (PKCE verifier + state)
- Token set returned by the token endpoint
- User identity returned by the userinfo endpoint
- Session record carried inside the signed session cookie
"""

import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_TOKEN_TYPE = "Bearer"
DEFAULT_EXPIRES_IN_SECONDS = 3600


# ============================================================================
# Provider Metadata
# ============================================================================

class ProviderConfiguration(BaseModel):
    """Identity provider metadata taken from one discovery document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str = Field(..., min_length=1, description="Issuer identifier")
    authorization_endpoint: str = Field(..., min_length=1)
    token_endpoint: str = Field(..., min_length=1)
    userinfo_endpoint: Optional[str] = Field(None)
    jwks_uri: Optional[str] = Field(None)
    end_session_endpoint: Optional[str] = Field(None)
    id_token_signing_alg_values_supported: List[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: List[str] = Field(default_factory=list)
    scopes_supported: List[str] = Field(default_factory=list)


# ============================================================================
# Login Flow Models
# ============================================================================

class AuthorizationRequest(BaseModel):
    """
    Per-login-attempt context.

    ``code_verifier`` and ``state`` must be persisted by the caller until the
    callback and discarded afterwards; ``url`` is where the user is sent.
    """

    url: str = Field(..., description="Provider authorization URL")
    code_verifier: str = Field(..., min_length=43, max_length=128)
    state: str = Field(..., min_length=1)
    code_challenge: str = Field(..., min_length=1)


class TokenSet(BaseModel):
    """Tokens issued by the provider's token endpoint."""

    access_token: str = Field(..., min_length=1)
    token_type: str = Field(default=DEFAULT_TOKEN_TYPE)
    expires_in: int = Field(default=DEFAULT_EXPIRES_IN_SECONDS, description="Lifetime in seconds")
    refresh_token: Optional[str] = Field(None)
    id_token: Optional[str] = Field(None)
    scope: Optional[str] = Field(None)

    @classmethod
    def from_token_response(cls, payload: Dict[str, Any]) -> "TokenSet":
        """
        Normalize a token endpoint response.

        Providers may omit ``token_type`` and ``expires_in``; those default to
        ``Bearer`` and 3600 seconds.

        Raises:
            ValidationError: If ``access_token`` is missing or a field has the wrong type
        """
        expires_in = payload.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS
        return cls(
            access_token=payload.get("access_token") or "",
            token_type=payload.get("token_type") or DEFAULT_TOKEN_TYPE,
            expires_in=int(expires_in),
            refresh_token=payload.get("refresh_token") or None,
            id_token=payload.get("id_token") or None,
            scope=payload.get("scope") or None,
        )


# ============================================================================
# Identity / Session Models
# ============================================================================

class UserIdentity(BaseModel):
    """
    Claims about the authenticated user.

    Only ``sub`` is an identity anchor; every other claim is optional and
    provider-dependent. Unknown claims are preserved.
    """

    model_config = ConfigDict(extra="allow")

    sub: Optional[str] = Field(None, description="Stable unique subject identifier")
    name: Optional[str] = Field(None)
    email: Optional[str] = Field(None)
    preferred_username: Optional[str] = Field(None)

    @property
    def display_name(self) -> str:
        """Name, username or the local part of the email, in that order."""
        if self.name:
            return self.name
        if self.preferred_username:
            return self.preferred_username
        if self.email and "@" in self.email:
            return self.email.split("@")[0]
        return "User"

    def to_claims(self) -> Dict[str, Any]:
        """Claims with a value, for display; the session token stores the full model."""
        return self.model_dump(exclude_none=True)


class SessionRecord(BaseModel):
    """State carried by the signed session token."""

    user: UserIdentity
    access_token: str = Field(..., min_length=1)
    id_token: Optional[str] = Field(None)
    expires_at: int = Field(..., description="Epoch seconds; the provider-asserted token expiry")
    issued_at: int = Field(..., description="Epoch seconds the session was minted")

    def seconds_remaining(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return max(0, int(self.expires_at - now))

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self.expires_at <= now


# ============================================================================
# Response Models
# ============================================================================

class Product(BaseModel):
    id: str
    name: str
    price: float
    description: str

