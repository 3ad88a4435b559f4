"""
Authentication Package

This package implements the relying-party side of OpenID Connect for the
service: login through the authorization code flow with PKCE, and a signed,
stateless session carried in a cookie.

Modules:
- discovery: Cached provider metadata (``/.well-known/openid-configuration``)
- oidc: Authorization request builder, token exchange, userinfo
- id_token: ID token verification against the provider JWKS
- session: Session token codec, cookie helpers and FastAPI dependencies
- transient: Storage for the state/verifier pair between login and callback
- callback: Callback state machine producing a session or an opaque failure
- guard: ASGI middleware redirecting anonymous requests for protected paths
- routes: Public authentication endpoints (/api/auth/login, /api/auth/callback, ...)

The authentication flow:
1. Browser hits a protected path and is redirected to /api/auth/login
2. The service redirects to the provider with a PKCE challenge and state
3. The provider redirects back to /api/auth/callback with a code
4. The service validates state, exchanges the code, fetches userinfo
5. A signed session cookie is set and the user lands on the dashboard
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
