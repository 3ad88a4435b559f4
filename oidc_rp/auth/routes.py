"""
Authentication routes for OIDC login, callback and logout.

This module exposes the authorization code flow (with PKCE) over HTTP:

- ``/api/auth/login`` builds the authorization request and redirects to the provider
- ``/api/auth/callback`` runs the callback orchestrator and sets the session cookie
- ``/api/auth/logout`` clears the session cookie
- ``/api/auth/session`` returns a summary of the current session
"""

import logging
from typing import Any, Dict
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from oidc_rp.auth.callback import CallbackOrchestrator
from oidc_rp.auth.oidc import OIDCClient
from oidc_rp.auth.session import clear_session_cookie, require_session, set_session_cookie
from oidc_rp.auth.transient import AuthorizationContextStore, CookieTransientStore
from oidc_rp.config import Settings
from oidc_rp.errors import ConfigurationError
from oidc_rp.models import SessionRecord

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/api/auth",
    tags=["authentication"],
)


def _transient_store(request: Request, settings: Settings) -> CookieTransientStore:
    return CookieTransientStore(
        request.cookies,
        secure=settings.cookie_secure,
        max_age=settings.TRANSIENT_COOKIE_MAX_AGE_SECONDS,
    )


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse)
async def login(request: Request):
    """
    Initiate the OIDC login flow.

    This endpoint:
    1. Generates the PKCE verifier/challenge pair and the state value
    2. Builds the authorization URL from the provider's discovery document
    3. Stores state and verifier in short-lived httpOnly cookies
    4. Redirects the user to the provider

    Returns:
        RedirectResponse to the provider authorization endpoint, or a JSON 500
        if the provider configuration is unavailable
    """
    settings: Settings = request.app.state.settings
    client: OIDCClient = request.app.state.oidc_client

    try:
        authorization = await client.create_authorization_request()
    except ConfigurationError as e:
        logger.error(f"Login initiation failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to initiate login"},
        )

    store = _transient_store(request, settings)
    AuthorizationContextStore(store).save(authorization)

    response = RedirectResponse(url=authorization.url, status_code=302)
    store.apply(response)
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", response_class=RedirectResponse)
async def callback(request: Request):
    """
    Handle the provider redirect.

    On success the session cookie is set and the user lands on the post-login
    path. On failure the user is sent to ``/?error=<reason>`` with an opaque
    reason code. The state and verifier cookies are cleared either way.
    """
    settings: Settings = request.app.state.settings
    orchestrator: CallbackOrchestrator = request.app.state.callback_orchestrator

    store = _transient_store(request, settings)
    outcome = await orchestrator.handle(
        request.query_params,
        AuthorizationContextStore(store),
    )

    if outcome.succeeded:
        response = RedirectResponse(url=settings.POST_LOGIN_REDIRECT_PATH, status_code=302)
        set_session_cookie(
            response,
            outcome.session_token,
            outcome.record,
            settings,
            now=outcome.record.issued_at,
        )
    else:
        query = urlencode({"error": outcome.reason})
        response = RedirectResponse(url=f"/?{query}", status_code=302)

    store.apply(response)
    return response


# =============================================================================
# Logout Endpoints
# =============================================================================

@auth_router.get("/logout", response_class=RedirectResponse)
async def logout_redirect(request: Request):
    settings: Settings = request.app.state.settings

    response = RedirectResponse(url="/", status_code=302)
    clear_session_cookie(response, settings)
    return response


@auth_router.post("/logout")
async def logout(request: Request):
    settings: Settings = request.app.state.settings

    response = JSONResponse(content={"success": True})
    clear_session_cookie(response, settings)
    return response


# =============================================================================
# Session Endpoint
# =============================================================================

@auth_router.get("/session")
async def session_summary(session: SessionRecord = Depends(require_session)) -> Dict[str, Any]:
    """
    Return the current user and session expiry.

    Raises:
        SessionVerificationError: If there is no valid session (answered with 401)
    """
    return {
        "user": session.user.to_claims(),
        "display_name": session.user.display_name,
        "expires_at": session.expires_at,
    }
