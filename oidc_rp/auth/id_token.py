"""
ID token verification against the provider JWKS.

This module handles:
- Fetching and caching the provider JWKS (JSON Web Key Set)
- Selecting the signing key for a token by ``kid``
- Verifying ID token signature and standard claims (iss, aud, exp, iat)
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import JWTError, jwk, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError

from oidc_rp.auth.discovery import ProviderConfigurationCache
from oidc_rp.config import Settings
from oidc_rp.errors import IdTokenError, MissingEndpoint
from oidc_rp.http import open_client

logger = logging.getLogger(__name__)

DEFAULT_ID_TOKEN_ALGORITHMS = ["RS256"]
CLOCK_SKEW_LEEWAY_SECONDS = 10


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract the public key from JWKS that matches the token's kid.

    A token without ``kid`` is matched only when the JWKS holds exactly one
    signing key.

    Args:
        token: JWT token string
        jwks: JWKS document containing keys

    Returns:
        Matching key from JWKS, or None if not found

    Raises:
        IdTokenError: If token header is malformed
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise IdTokenError(f"Failed to decode token header: {e}") from e

    keys = [key for key in jwks.get("keys", []) if key.get("use", "sig") == "sig"]

    kid = unverified_header.get("kid")
    if not kid:
        return keys[0] if len(keys) == 1 else None

    for key in keys:
        if key.get("kid") == kid:
            return key

    return None


class IdTokenVerifier:
    """
    Verify ID tokens issued by the configured provider.

    Args:
        settings: Application settings (client ID is the expected audience)
        discovery: Provider configuration cache (issuer, jwks_uri, algorithms)
        http_client: Optional shared client for JWKS requests
        jwks_cache_seconds: JWKS cache lifetime
    """

    def __init__(
        self,
        settings: Settings,
        discovery: ProviderConfigurationCache,
        http_client: Optional[httpx.AsyncClient] = None,
        jwks_cache_seconds: Optional[float] = None,
    ):
        self.settings = settings
        self.discovery = discovery
        self._http_client = http_client
        self._cache_ttl = (
            settings.JWKS_CACHE_SECONDS if jwks_cache_seconds is None else jwks_cache_seconds
        )
        self._jwks_cache: Optional[Dict[str, Any]] = None
        self._jwks_cache_time: float = 0.0

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch JWKS from the provider with caching.

        Args:
            force_refresh: If True, bypass cache and fetch fresh JWKS

        Returns:
            JWKS document containing keys

        Raises:
            MissingEndpoint: If the provider publishes no jwks_uri
            IdTokenError: If the JWKS endpoint is unreachable or the response is invalid
        """
        current_time = time.monotonic()

        if (
            not force_refresh
            and self._jwks_cache is not None
            and (current_time - self._jwks_cache_time) < self._cache_ttl
        ):
            return self._jwks_cache

        configuration = await self.discovery.get_configuration()
        if not configuration.jwks_uri:
            raise MissingEndpoint("Provider does not publish a jwks_uri")

        try:
            async with open_client(self._http_client, self.settings.OIDC_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.get(configuration.jwks_uri)
                response.raise_for_status()
                jwks_data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"JWKS request failed: {e}", extra={"jwks_uri": configuration.jwks_uri})
            raise IdTokenError("Unable to fetch provider JWKS") from e

        if not isinstance(jwks_data, dict) or "keys" not in jwks_data:
            raise IdTokenError("Invalid JWKS response: missing 'keys' field")

        self._jwks_cache = jwks_data
        self._jwks_cache_time = current_time

        return jwks_data

    async def verify(self, id_token: str) -> Dict[str, Any]:
        """
        Verify and decode an ID token.

        1. Finds the signing key in the JWKS (refreshing once on a kid miss)
        2. Verifies the token signature
        3. Validates aud, iss, exp, iat with a small clock skew leeway

        Args:
            id_token: JWT ID token string from the token response

        Returns:
            Dictionary of verified token claims

        Raises:
            IdTokenError: If the token is invalid, expired, or signed by an unknown key
            MissingEndpoint: If the provider publishes no jwks_uri
        """
        configuration = await self.discovery.get_configuration()

        jwks = await self.fetch_jwks()
        signing_key = get_signing_key(id_token, jwks)
        if not signing_key:
            # Keys may have rotated
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = get_signing_key(id_token, jwks)

            if not signing_key:
                raise IdTokenError("Unable to find matching signing key in JWKS")

        algorithms = self._allowed_algorithms(configuration.id_token_signing_alg_values_supported)
        header_alg = jwt.get_unverified_header(id_token).get("alg")
        if header_alg not in algorithms:
            raise IdTokenError(f"ID token algorithm not allowed: {header_alg}")

        try:
            public_key = jwk.construct(signing_key, algorithm=signing_key.get("alg") or header_alg)
            pem = public_key.to_pem().decode("utf-8")
        except Exception as e:
            raise IdTokenError(f"Failed to construct public key from JWK: {e}") from e

        try:
            claims = jwt.decode(
                id_token,
                pem,
                algorithms=algorithms,
                audience=self.settings.OIDC_CLIENT_ID,
                issuer=configuration.issuer,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_iat": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_sub": True,
                    "verify_at_hash": False,
                    "require_exp": True,
                    "require_sub": True,
                    "leeway": CLOCK_SKEW_LEEWAY_SECONDS,
                },
            )
        except ExpiredSignatureError as e:
            raise IdTokenError("ID token has expired") from e
        except JWTClaimsError as e:
            raise IdTokenError(f"Invalid token claims: {e}") from e
        except JWTError as e:
            raise IdTokenError(f"Token verification failed: {e}") from e

        return claims

    @staticmethod
    def _allowed_algorithms(advertised: List[str]) -> List[str]:
        # Symmetric and unsigned tokens are never accepted from the provider
        allowed = [
            alg for alg in advertised
            if alg and alg.lower() != "none" and not alg.upper().startswith("HS")
        ]
        return allowed or list(DEFAULT_ID_TOKEN_ALGORITHMS)
