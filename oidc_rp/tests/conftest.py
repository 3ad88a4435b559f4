"""Shared fixtures: settings, the mock provider and an app wired to it."""

import asyncio
from contextlib import contextmanager

import httpx
import pytest
from fastapi.testclient import TestClient

from oidc_rp.auth.discovery import ProviderConfigurationCache
from oidc_rp.auth.oidc import OIDCClient
from oidc_rp.auth.session import SessionCodec
from oidc_rp.config import Settings
from oidc_rp.main import create_application
from oidc_rp.tests.mock_provider import (
    CLIENT_ID,
    CLIENT_SECRET,
    ISSUER,
    REDIRECT_URI,
    create_mock_provider,
)

TEST_SESSION_SECRET = "test-session-secret-1234567890123456"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    """Settings pointing at the mock provider"""
    return Settings(
        _env_file=None,
        OIDC_ISSUER=ISSUER,
        OIDC_CLIENT_ID=CLIENT_ID,
        OIDC_CLIENT_SECRET=CLIENT_SECRET,
        OIDC_REDIRECT_URI=REDIRECT_URI,
        SESSION_JWT_SECRET=TEST_SESSION_SECRET,
        APP_ENV="test",
    )


@pytest.fixture
def mock_provider():
    return create_mock_provider()


@contextmanager
def open_provider_client(mock_provider):
    """httpx client routed to the mock provider in-process, closed on exit"""
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=mock_provider))
    try:
        yield http_client
    finally:
        asyncio.run(http_client.aclose())


@pytest.fixture
def provider_http_client(mock_provider):
    with open_provider_client(mock_provider) as http_client:
        yield http_client


@pytest.fixture
def discovery(settings, provider_http_client):
    return ProviderConfigurationCache(settings, http_client=provider_http_client)


@pytest.fixture
def oidc_client(settings, discovery, provider_http_client):
    return OIDCClient(settings, discovery, http_client=provider_http_client)


@pytest.fixture
def codec():
    return SessionCodec(TEST_SESSION_SECRET)


@pytest.fixture
def app(settings, provider_http_client):
    return create_application(settings=settings, http_client=provider_http_client)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
