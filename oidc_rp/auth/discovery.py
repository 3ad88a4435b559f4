"""
Provider discovery with an explicit, injectable cache.

The cache holds a single ``ProviderConfiguration``. The slot is only ever
replaced by a configuration built from one complete discovery response, so
concurrent first requests may fetch redundantly but never observe a mix of
fields from different fetches. Failures are not cached: the next caller
fetches again from scratch.
"""

import logging
import time
from typing import Optional

import httpx
from pydantic import ValidationError

from oidc_rp.config import Settings
from oidc_rp.errors import ConfigurationError
from oidc_rp.http import open_client
from oidc_rp.models import ProviderConfiguration

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def discovery_url(issuer: str) -> str:
    return f"{issuer.rstrip('/')}{WELL_KNOWN_PATH}"


class ProviderConfigurationCache:
    """
    Fetch-or-return-cached access to the identity provider metadata.

    Args:
        settings: Application settings (issuer and client credentials)
        http_client: Optional shared client; a short-lived one is used otherwise
        ttl_seconds: Optional cache lifetime. ``None`` keeps the configuration
            for the lifetime of this object.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        ttl_seconds: Optional[float] = None,
    ):
        self._settings = settings
        self._http_client = http_client
        self._ttl_seconds = ttl_seconds
        self._cached: Optional[ProviderConfiguration] = None
        self._cached_at: float = 0.0

    @property
    def cached(self) -> Optional[ProviderConfiguration]:
        return self._cached

    def invalidate(self) -> None:
        """Drop the cached configuration; the next call fetches again."""
        self._cached = None
        self._cached_at = 0.0

    def _is_fresh(self) -> bool:
        if self._cached is None:
            return False
        if self._ttl_seconds is None:
            return True
        return (time.monotonic() - self._cached_at) < self._ttl_seconds

    async def get_configuration(self) -> ProviderConfiguration:
        """
        Return the provider configuration, fetching it on first use.

        Returns:
            Cached or freshly fetched ProviderConfiguration

        Raises:
            ConfigurationError: If OIDC settings are incomplete or discovery fails
        """
        self._settings.require_oidc()

        if self._is_fresh():
            return self._cached

        configuration = await self._fetch()

        self._cached = configuration
        self._cached_at = time.monotonic()
        return configuration

    async def _fetch(self) -> ProviderConfiguration:
        issuer = self._settings.OIDC_ISSUER
        url = discovery_url(issuer)

        try:
            async with open_client(self._http_client, self._settings.OIDC_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.get(url, headers={"Accept": "application/json"})
                response.raise_for_status()
                document = response.json()
        except httpx.HTTPError as e:
            logger.error(
                f"Discovery request failed: {e}",
                extra={"discovery_url": url},
            )
            raise ConfigurationError("Failed to fetch OIDC discovery document") from e
        except ValueError as e:
            logger.error(
                f"Discovery document is not valid JSON: {e}",
                extra={"discovery_url": url},
            )
            raise ConfigurationError("Invalid OIDC discovery document") from e

        if not isinstance(document, dict):
            raise ConfigurationError("Invalid OIDC discovery document")

        try:
            configuration = ProviderConfiguration.model_validate(document)
        except ValidationError as e:
            logger.error(
                f"Discovery document is missing required metadata: {e}",
                extra={"discovery_url": url},
            )
            raise ConfigurationError("Incomplete OIDC discovery document") from e

        if configuration.issuer.rstrip("/") != issuer.rstrip("/"):
            logger.error(
                "Discovery issuer mismatch",
                extra={"expected_issuer": issuer, "reported_issuer": configuration.issuer},
            )
            raise ConfigurationError("OIDC discovery issuer does not match OIDC_ISSUER")

        logger.info(
            "Loaded OIDC provider configuration",
            extra={
                "issuer": configuration.issuer,
                "has_userinfo": configuration.userinfo_endpoint is not None,
                "has_jwks": configuration.jwks_uri is not None,
            },
        )
        return configuration
