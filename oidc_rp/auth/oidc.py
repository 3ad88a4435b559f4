"""
OIDC client operations against the identity provider.

This module implements the relying-party side of the authorization code
flow with PKCE:

- Authorization request generation (verifier, challenge, state, URL)
- Code-to-token exchange at the token endpoint
- Refresh token grant
- UserInfo retrieval

Every endpoint comes from the cached discovery document; nothing here
hardcodes provider paths.
"""

import base64
import hashlib
import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import httpx

from oidc_rp.auth.discovery import ProviderConfigurationCache
from oidc_rp.config import Settings
from oidc_rp.errors import MissingEndpoint, TokenExchangeError, UserInfoError
from oidc_rp.http import is_json_response, open_client
from oidc_rp.models import (
    AuthorizationRequest,
    ProviderConfiguration,
    TokenSet,
    UserIdentity,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PKCE / State Helpers
# =============================================================================

def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        Base64-URL-encoded random string (43 characters, 256 bits of entropy)
    """
    verifier_bytes = secrets.token_bytes(32)
    return base64.urlsafe_b64encode(verifier_bytes).decode("utf-8").rstrip("=")


def generate_code_challenge(verifier: str) -> str:
    """
    Generate code challenge from verifier using S256 method.

    Args:
        verifier: Code verifier string

    Returns:
        Base64-URL-encoded SHA256 hash of verifier, without padding
    """
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def append_query_params(url: str, params: Dict[str, str]) -> str:
    """Set ``params`` on ``url``, keeping any query it already carries."""
    parsed = urlparse(url)
    existing = parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urlencode(existing, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


# =============================================================================
# OIDC Client
# =============================================================================

class OIDCClient:
    """
    Authorization request builder, token exchange client and userinfo fetcher.

    Args:
        settings: Application settings (client credentials, redirect URI, scopes)
        discovery: Provider configuration cache
        http_client: Optional shared client for outbound requests
    """

    def __init__(
        self,
        settings: Settings,
        discovery: ProviderConfigurationCache,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.discovery = discovery
        self._http_client = http_client

    # -------------------------------------------------------------------------
    # Authorization request
    # -------------------------------------------------------------------------

    async def create_authorization_request(self) -> AuthorizationRequest:
        """
        Build a PKCE-bound authorization URL.

        The caller must persist ``code_verifier`` and ``state`` until the
        callback.

        Returns:
            AuthorizationRequest with url, code_verifier, state and code_challenge

        Raises:
            ConfigurationError: If settings are incomplete or discovery fails
        """
        configuration = await self.discovery.get_configuration()

        code_verifier = generate_code_verifier()
        code_challenge = generate_code_challenge(code_verifier)
        state = generate_state()

        params = {
            "client_id": self.settings.OIDC_CLIENT_ID,
            "redirect_uri": self.settings.OIDC_REDIRECT_URI,
            "response_type": "code",
            "scope": self.settings.OIDC_SCOPES,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "state": state,
        }

        url = append_query_params(configuration.authorization_endpoint, params)

        return AuthorizationRequest(
            url=url,
            code_verifier=code_verifier,
            state=state,
            code_challenge=code_challenge,
        )

    # -------------------------------------------------------------------------
    # Token endpoint
    # -------------------------------------------------------------------------

    async def exchange_code(self, code: str, code_verifier: str) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        State is not checked here; the callback orchestrator validates it
        before calling this method.

        Args:
            code: Authorization code from the callback
            code_verifier: PKCE verifier persisted at login

        Returns:
            Normalized TokenSet

        Raises:
            ConfigurationError: If settings are incomplete or discovery fails
            TokenExchangeError: If the provider rejects the request or is unreachable
        """
        configuration = await self.discovery.get_configuration()

        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.OIDC_REDIRECT_URI,
            "code_verifier": code_verifier,
        }
        return await self._token_request(configuration, payload)

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """
        Obtain a new token set with a refresh token.

        Raises:
            ConfigurationError: If settings are incomplete or discovery fails
            TokenExchangeError: If the provider rejects the refresh token
        """
        configuration = await self.discovery.get_configuration()

        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return await self._token_request(configuration, payload)

    def _client_authentication(
        self,
        configuration: ProviderConfiguration,
        payload: Dict[str, str],
    ) -> Optional[httpx.BasicAuth]:
        """
        Add client credentials to the token request.

        ``client_secret_post`` is used unless the provider only advertises
        ``client_secret_basic``.
        """
        methods = configuration.token_endpoint_auth_methods_supported
        if methods and "client_secret_post" not in methods and "client_secret_basic" in methods:
            return httpx.BasicAuth(self.settings.OIDC_CLIENT_ID, self.settings.OIDC_CLIENT_SECRET)

        payload["client_id"] = self.settings.OIDC_CLIENT_ID
        payload["client_secret"] = self.settings.OIDC_CLIENT_SECRET
        return None

    async def _token_request(
        self,
        configuration: ProviderConfiguration,
        payload: Dict[str, str],
    ) -> TokenSet:
        grant_type = payload["grant_type"]
        auth = self._client_authentication(configuration, payload)

        request_kwargs: Dict[str, Any] = {
            "data": payload,
            "headers": {
                "Accept": "application/json",
                "Content-Type": "application/x-www-form-urlencoded",
            },
        }
        if auth is not None:
            request_kwargs["auth"] = auth

        try:
            async with open_client(self._http_client, self.settings.OIDC_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.post(configuration.token_endpoint, **request_kwargs)
        except httpx.HTTPError as e:
            logger.error(
                f"Token request failed: {e}",
                extra={"grant_type": grant_type},
            )
            raise TokenExchangeError("Unable to reach token endpoint") from e

        token_data = _json_object(response)

        if not response.is_success or (token_data and "error" in token_data):
            error_data = token_data or {}
            logger.warning(
                "Token endpoint rejected request",
                extra={
                    "grant_type": grant_type,
                    "status_code": response.status_code,
                    "provider_error": error_data.get("error"),
                    "provider_error_description": error_data.get("error_description"),
                },
            )
            raise TokenExchangeError(
                f"Token request failed: {error_data.get('error') or response.status_code}"
            )

        if token_data is None:
            raise TokenExchangeError("Token response is not a JSON object")

        try:
            token_set = TokenSet.from_token_response(token_data)
        except (ValueError, TypeError) as e:
            logger.error(
                f"Invalid token response: {e}",
                extra={"grant_type": grant_type},
            )
            raise TokenExchangeError("Token response missing access_token") from e

        logger.debug(
            "Token request succeeded",
            extra={
                "grant_type": grant_type,
                "expires_in": token_set.expires_in,
                "has_id_token": token_set.id_token is not None,
                "has_refresh_token": token_set.refresh_token is not None,
            },
        )
        return token_set

    # -------------------------------------------------------------------------
    # UserInfo endpoint
    # -------------------------------------------------------------------------

    async def fetch_userinfo(self, access_token: str) -> UserIdentity:
        """
        Resolve an access token to the user's claims.

        Args:
            access_token: Bearer token from the token set

        Returns:
            UserIdentity with the provider's claims preserved

        Raises:
            ConfigurationError: If settings are incomplete or discovery fails
            MissingEndpoint: If the provider has no userinfo endpoint
            UserInfoError: If the request fails or returns no claim object
        """
        configuration = await self.discovery.get_configuration()

        endpoint = configuration.userinfo_endpoint
        if not endpoint:
            raise MissingEndpoint("Userinfo endpoint not available")

        try:
            async with open_client(self._http_client, self.settings.OIDC_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.get(
                    endpoint,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Userinfo request failed: {e}")
            raise UserInfoError("Unable to reach userinfo endpoint") from e

        if not response.is_success:
            logger.warning(
                "Userinfo endpoint rejected request",
                extra={"status_code": response.status_code},
            )
            raise UserInfoError(f"Failed to fetch user info: {response.status_code}")

        claims = _json_object(response)
        if claims is None:
            raise UserInfoError("Userinfo response is not a JSON object")

        try:
            return UserIdentity.model_validate(claims)
        except ValueError as e:
            logger.error(f"Invalid userinfo claims: {e}")
            raise UserInfoError("Userinfo response has malformed standard claims") from e


def _json_object(response: httpx.Response) -> Optional[Dict[str, Any]]:
    """Decode a JSON object body, or None if the body is anything else."""
    if not is_json_response(response):
        return None
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
