"""
FastAPI Application Factory
===========================

Entry point for the OIDC relying-party service.

Routers:
    - /api/auth/*    : Login, callback, logout, session summary
    - /api/products  : Product API (inline session check, 401 when anonymous)
    - /products      : Product page (route guard)
    - /dashboard     : Post-login landing area (route guard)
    - /health        : Health check endpoint

Environment Variables Required:
    - OIDC_ISSUER: Identity provider issuer URL (e.g., "https://localhost:4000")
    - OIDC_CLIENT_ID / OIDC_CLIENT_SECRET: Client credentials
    - OIDC_REDIRECT_URI: Registered callback (e.g., "http://localhost:3000/api/auth/callback")
    - SESSION_JWT_SECRET: Session signing secret (required when APP_ENV=production)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn oidc_rp.main:app --reload --port 3000

    Production:
        APP_ENV=production uvicorn oidc_rp.main:app --host 0.0.0.0 --port 3000 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from oidc_rp import __version__
from oidc_rp.auth import auth_router
from oidc_rp.auth.callback import CallbackOrchestrator
from oidc_rp.auth.discovery import ProviderConfigurationCache
from oidc_rp.auth.guard import ProtectedPathPolicy, SessionGuardMiddleware
from oidc_rp.auth.id_token import IdTokenVerifier
from oidc_rp.auth.oidc import OIDCClient
from oidc_rp.auth.session import SessionCodec, get_optional_session
from oidc_rp.config import Settings, get_settings, validate_configuration
from oidc_rp.errors import SessionVerificationError
from oidc_rp.models import SessionRecord
from oidc_rp.products import products_router

logger = logging.getLogger(__name__)


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup logs the effective configuration. Shutdown drops the cached
    provider metadata.
    """
    settings: Settings = app.state.settings

    logger.info(
        "Starting OIDC relying party",
        extra={
            "issuer": settings.OIDC_ISSUER,
            "app_env": settings.APP_ENV,
            "protected_prefixes": settings.protected_prefixes_list,
        },
    )

    yield

    app.state.discovery.invalidate()
    logger.info("OIDC relying party shutdown complete")


def create_application(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Session codec, discovery cache, OIDC client and callback orchestrator
        - Route guard and optional CORS middleware
        - Route handlers
        - Exception handlers

    Args:
        settings: Settings to use (defaults to ``get_settings()``)
        http_client: Optional shared client for every provider request

    Returns:
        FastAPI: Configured application instance

    Raises:
        ConfigurationError: If no session secret is configured in production
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    status = validate_configuration(settings)
    for error in status["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in status["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    codec = SessionCodec(settings.resolve_session_secret(), issuer=settings.SESSION_JWT_ISSUER)

    discovery = ProviderConfigurationCache(
        settings,
        http_client=http_client,
        ttl_seconds=settings.OIDC_DISCOVERY_CACHE_SECONDS,
    )
    oidc_client = OIDCClient(settings, discovery, http_client=http_client)

    id_token_verifier = None
    if settings.OIDC_VERIFY_ID_TOKEN:
        id_token_verifier = IdTokenVerifier(settings, discovery, http_client=http_client)

    orchestrator = CallbackOrchestrator(oidc_client, codec, id_token_verifier=id_token_verifier)

    policy = ProtectedPathPolicy(
        settings.protected_prefixes_list,
        login_path=settings.LOGIN_PATH,
    )

    app = FastAPI(
        title="OIDC Relying Party",
        description="OpenID Connect login with stateless signed sessions",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.session_codec = codec
    app.state.discovery = discovery
    app.state.oidc_client = oidc_client
    app.state.callback_orchestrator = orchestrator

    app.add_middleware(
        SessionGuardMiddleware,
        policy=policy,
        codec=codec,
        cookie_name=settings.SESSION_COOKIE_NAME,
    )

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)
    app.include_router(products_router)

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        return {
            "status": "ok",
            "service": "oidc-relying-party",
            "version": __version__
        }

    @app.get("/", tags=["System"])
    async def root(
        error: Optional[str] = None,
        session: Optional[SessionRecord] = Depends(get_optional_session),
    ) -> Dict[str, Any]:
        """
        Public home.

        Reports whether the caller is logged in and echoes the opaque
        ``error`` code set by a failed callback.
        """
        return {
            "service": "oidc-relying-party",
            "authenticated": session is not None,
            "user": session.user.display_name if session else None,
            "error": error,
            "endpoints": {
                "login": "/api/auth/login",
                "logout": "/api/auth/logout",
                "dashboard": "/dashboard",
                "products": "/api/products",
            }
        }

    @app.get("/dashboard", tags=["Pages"])
    async def dashboard(
        session: Optional[SessionRecord] = Depends(get_optional_session),
    ):
        if session is None:
            return RedirectResponse(url=settings.LOGIN_PATH, status_code=302)

        return {
            "message": f"Welcome, {session.user.display_name}",
            "user": session.user.to_claims(),
            "expires_at": session.expires_at,
        }

    @app.exception_handler(SessionVerificationError)
    async def session_exception_handler(
        request: Request, exc: SessionVerificationError
    ) -> JSONResponse:
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a generic error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            }
        )

    return app


# Create app instance for uvicorn
app = create_application()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "oidc_rp.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=not settings.is_production,
        log_level=settings.LOG_LEVEL.lower()
    )
