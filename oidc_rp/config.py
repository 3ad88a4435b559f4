"""
Configuration module for the OIDC relying party.

This module uses Pydantic Settings to load and validate environment variables
for the identity provider connection, session token signing, route
protection and CORS.

Environment variables are loaded from .env file or system environment.
Missing OIDC variables do not stop the process: they are fatal to each OIDC
operation instead (see ``Settings.require_oidc``).
"""

import logging
from functools import lru_cache
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from oidc_rp.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Never reachable in production, see Settings.resolve_session_secret
DEVELOPMENT_SESSION_SECRET = "default-secret-change-this-for-development-only"

REQUIRED_OIDC_VARIABLES = (
    "OIDC_ISSUER",
    "OIDC_CLIENT_ID",
    "OIDC_CLIENT_SECRET",
    "OIDC_REDIRECT_URI",
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All configuration for the identity provider (OIDC), session tokens,
    route protection and logging is defined here.
    """

    # =========================================================================
    # Identity Provider (OIDC)
    # =========================================================================

    OIDC_ISSUER: Optional[str] = Field(
        None,
        description="Issuer base URL; discovery is fetched from {issuer}/.well-known/openid-configuration",
    )

    OIDC_CLIENT_ID: Optional[str] = Field(
        None,
        description="Client ID registered with the identity provider",
    )

    OIDC_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret registered with the identity provider",
    )

    OIDC_REDIRECT_URI: Optional[str] = Field(
        None,
        description="Callback URL registered with the provider (e.g., https://app.example.com/api/auth/callback)",
    )

    OIDC_SCOPES: str = Field(
        default="openid profile email",
        description="Space-separated scopes requested at login",
    )

    OIDC_VERIFY_ID_TOKEN: bool = Field(
        default=True,
        description="Verify the ID token signature and claims against the provider JWKS",
    )

    OIDC_HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for discovery, token, userinfo and JWKS requests",
        gt=0,
    )

    OIDC_DISCOVERY_CACHE_SECONDS: Optional[int] = Field(
        default=None,
        description="Discovery cache TTL in seconds (unset: cached for the process lifetime)",
        ge=1,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache provider JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    # =========================================================================
    # Session Token Configuration
    # =========================================================================

    SESSION_JWT_SECRET: Optional[str] = Field(
        None,
        description="Secret key for signing session tokens (required in production)",
        min_length=32,
    )

    SESSION_JWT_ISSUER: str = Field(
        default="oidc-relying-party",
        description="Issuer claim embedded in session tokens",
    )

    SESSION_COOKIE_NAME: str = Field(
        default="oidc_session",
        description="Cookie holding the signed session token",
        min_length=1,
    )

    TRANSIENT_COOKIE_MAX_AGE_SECONDS: int = Field(
        default=600,
        description="Lifetime of the state and code verifier cookies set at login",
        ge=60,
        le=3600,
    )

    # =========================================================================
    # Route Protection
    # =========================================================================

    PROTECTED_PATH_PREFIXES: str = Field(
        default="/dashboard,/products",
        description="Comma-separated path prefixes that require a valid session",
    )

    LOGIN_PATH: str = Field(
        default="/api/auth/login",
        description="Where anonymous users are redirected",
    )

    POST_LOGIN_REDIRECT_PATH: str = Field(
        default="/dashboard",
        description="Protected landing area after a successful login",
    )

    # =========================================================================
    # Server / CORS / Logging
    # =========================================================================

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    APP_ENV: str = Field(
        default="development",
        description="Deployment mode: development, test or production",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    HOST: str = Field(default="0.0.0.0")

    PORT: int = Field(default=3000, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def cookie_secure(self) -> bool:
        """Cookies carry the Secure attribute only in production."""
        return self.is_production

    @property
    def protected_prefixes_list(self) -> List[str]:
        """
        Parse and return PROTECTED_PATH_PREFIXES as an ordered list.

        Returns:
            List of path prefixes without whitespace or duplicates.
        """
        prefixes: List[str] = []
        for prefix in self.PROTECTED_PATH_PREFIXES.split(","):
            prefix = prefix.strip()
            if prefix and prefix not in prefixes:
                prefixes.append(prefix)
        return prefixes

    @property
    def allowed_origins_list(self) -> List[str]:
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def scopes_list(self) -> List[str]:
        return self.OIDC_SCOPES.split()

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_ISSUER", "OIDC_REDIRECT_URI")
    @classmethod
    def validate_http_url(cls, v: Optional[str]) -> Optional[str]:
        """
        Validate that provider-facing URLs are absolute http(s) URLs.

        Raises:
            ValueError: If the value is not an absolute http(s) URL
        """
        if v is None:
            return v

        v = v.strip()
        if not v:
            return None

        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Expected an absolute http(s) URL, got: {v}")

        return v

    @field_validator("OIDC_SCOPES")
    @classmethod
    def validate_scopes(cls, v: str) -> str:
        if "openid" not in v.split():
            raise ValueError("OIDC_SCOPES must include 'openid'")
        return v

    @field_validator("PROTECTED_PATH_PREFIXES")
    @classmethod
    def validate_protected_prefixes(cls, v: str) -> str:
        for prefix in (p.strip() for p in v.split(",")):
            if prefix and not prefix.startswith("/"):
                raise ValueError(
                    f"Invalid path prefix: '{prefix}'. Prefixes must start with '/'"
                )
        return v

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = ["development", "test", "production"]

        v = v.strip().lower()
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of {allowed}, got: {v}")

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        v = v.strip().upper()
        if v not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}, got: {v}")

        return v

    # =========================================================================
    # Guards
    # =========================================================================

    def require_oidc(self) -> None:
        """
        Ensure every variable needed to talk to the identity provider is set.

        Called before discovery, request generation and token exchange.

        Raises:
            ConfigurationError: Naming each missing variable
        """
        missing = [name for name in REQUIRED_OIDC_VARIABLES if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                f"Missing required OIDC configuration: {', '.join(missing)}"
            )

    def resolve_session_secret(self) -> str:
        """
        Return the secret used to sign session tokens.

        In production a configured secret is mandatory. Outside production a
        fixed, publicly known default is used and a warning is logged.

        Returns:
            Signing secret

        Raises:
            ConfigurationError: If no secret is configured in production
        """
        if self.SESSION_JWT_SECRET:
            return self.SESSION_JWT_SECRET

        if self.is_production:
            raise ConfigurationError(
                "SESSION_JWT_SECRET environment variable is required in production"
            )

        logger.warning(
            "SESSION_JWT_SECRET not set. Using an insecure default secret; "
            "sessions can be forged by anyone. Development use only.",
            extra={"app_env": self.APP_ENV},
        )
        return DEVELOPMENT_SESSION_SECRET


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle. Tests call ``get_settings.cache_clear()``
    after changing the environment.

    Raises:
        ValidationError: If an environment variable is present but invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup; the report is logged, not enforced
    (enforcement happens in ``require_oidc`` and ``resolve_session_secret``).

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration(get_settings())
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    errors = []
    warnings = []

    missing = [name for name in REQUIRED_OIDC_VARIABLES if not getattr(settings, name)]
    if missing:
        errors.append(f"Missing OIDC configuration: {', '.join(missing)}")

    if not settings.SESSION_JWT_SECRET:
        if settings.is_production:
            errors.append("SESSION_JWT_SECRET is required in production")
        else:
            warnings.append("SESSION_JWT_SECRET is not set (insecure development default in use)")

    if settings.is_production:
        for name in ("OIDC_ISSUER", "OIDC_REDIRECT_URI"):
            value = getattr(settings, name)
            if value and not value.startswith("https://"):
                warnings.append(f"{name} is not an https URL in production")

    if not settings.protected_prefixes_list:
        warnings.append("No protected path prefixes configured")

    if not settings.OIDC_VERIFY_ID_TOKEN:
        warnings.append("ID token verification is disabled")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "protected_prefixes": settings.protected_prefixes_list,
        "app_env": settings.APP_ENV,
    }
