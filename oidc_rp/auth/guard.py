"""
Route guard for protected page areas.

Runs before routing: any request whose path falls under a protected prefix
must carry a session token that verifies and has not expired, otherwise the
user is redirected to the login entry point. The guard only reads cookies;
it never touches the request body.
"""

import logging
from typing import Iterable, Sequence, Tuple

from starlette.requests import Request
from starlette.responses import RedirectResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from oidc_rp.auth.session import SessionCodec

logger = logging.getLogger(__name__)

DEFAULT_EXEMPT_PREFIXES: Tuple[str, ...] = ("/api/auth", "/static", "/favicon.ico")


class ProtectedPathPolicy:
    """
    Decide which request paths require a session.

    Prefixes match as plain string prefixes: ``/products`` covers
    ``/products``, ``/products/42`` and ``/products-archive`` alike. Exempt
    prefixes win over protected ones.

    Args:
        protected_prefixes: Path prefixes requiring a valid session
        exempt_prefixes: Path prefixes that are never guarded
        login_path: Redirect target for anonymous users

    Raises:
        ValueError: If the login path itself would be protected
    """

    def __init__(
        self,
        protected_prefixes: Iterable[str],
        exempt_prefixes: Sequence[str] = DEFAULT_EXEMPT_PREFIXES,
        login_path: str = "/api/auth/login",
    ):
        self.protected_prefixes = tuple(protected_prefixes)
        self.exempt_prefixes = tuple(exempt_prefixes)
        self.login_path = login_path

        if self.is_protected(login_path):
            raise ValueError(f"Login path {login_path} must not be a protected path")

    def is_protected(self, path: str) -> bool:
        if any(path.startswith(prefix) for prefix in self.exempt_prefixes):
            return False
        return any(path.startswith(prefix) for prefix in self.protected_prefixes)


class SessionGuardMiddleware:
    """
    Pure ASGI middleware redirecting anonymous requests for protected paths.

    Args:
        app: Downstream ASGI application
        policy: Protected path policy
        codec: Session codec used to verify the cookie
        cookie_name: Name of the session cookie
    """

    def __init__(
        self,
        app: ASGIApp,
        policy: ProtectedPathPolicy,
        codec: SessionCodec,
        cookie_name: str,
    ):
        self.app = app
        self.policy = policy
        self.codec = codec
        self.cookie_name = cookie_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.policy.is_protected(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if self.codec.decode(request.cookies.get(self.cookie_name)) is not None:
            await self.app(scope, receive, send)
            return

        logger.info(
            "Redirecting anonymous request to login",
            extra={"path": request.url.path},
        )
        response = RedirectResponse(url=self.policy.login_path, status_code=302)
        await response(scope, receive, send)
