"""
Route Guard Tests

Tests for oidc_rp/auth/guard.py: path policy matching and the redirect
behaviour of the session guard middleware.
"""

import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from oidc_rp.auth.guard import ProtectedPathPolicy, SessionGuardMiddleware
from oidc_rp.models import SessionRecord, UserIdentity


def make_token(codec, expires_in: int = 3600) -> str:
    now = int(time.time())
    return codec.encode(
        SessionRecord(
            user=UserIdentity(sub="mock-user-123"),
            access_token="mock-access-token-xyz",
            expires_at=now + expires_in,
            issued_at=now,
        )
    )


@pytest.fixture
def guarded_client(codec):
    """Bare app behind the guard, without any auth routes"""
    app = FastAPI()

    @app.get("/dashboard")
    async def dashboard():
        return {"page": "dashboard"}

    @app.get("/products/{product_id}")
    async def product(product_id: str):
        return {"page": product_id}

    @app.get("/public")
    async def public():
        return {"page": "public"}

    app.add_middleware(
        SessionGuardMiddleware,
        policy=ProtectedPathPolicy(["/dashboard", "/products"]),
        codec=codec,
        cookie_name="oidc_session",
    )
    return TestClient(app, follow_redirects=False)


class TestProtectedPathPolicy:
    """Prefix matching"""

    def test_matches_plain_prefix(self):
        policy = ProtectedPathPolicy(["/dashboard", "/products"])

        assert policy.is_protected("/dashboard")
        assert policy.is_protected("/dashboard/")
        assert policy.is_protected("/products/42")
        assert policy.is_protected("/products-archive")
        assert policy.is_protected("/dashboard-settings")
        assert not policy.is_protected("/")
        assert not policy.is_protected("/api/products")
        assert not policy.is_protected("/Dashboard")

    def test_exempt_prefix_wins_over_plain_prefix_match(self):
        policy = ProtectedPathPolicy(["/api"], exempt_prefixes=["/api/auth"])

        assert policy.is_protected("/api/products")
        assert not policy.is_protected("/api/auth/login")
        assert not policy.is_protected("/api/authz")

    def test_exempt_prefixes_win(self):
        policy = ProtectedPathPolicy(["/"], login_path="/signin", exempt_prefixes=["/signin", "/static"])

        assert policy.is_protected("/anything")
        assert not policy.is_protected("/static/app.css")
        assert not policy.is_protected("/signin")

    def test_auth_routes_are_exempt_by_default(self):
        policy = ProtectedPathPolicy(["/api"])

        assert policy.is_protected("/api/products")
        assert not policy.is_protected("/api/auth/login")
        assert not policy.is_protected("/api/auth/callback")

    def test_login_path_must_not_be_protected(self):
        with pytest.raises(ValueError):
            ProtectedPathPolicy(["/login"], login_path="/login")


class TestSessionGuardMiddleware:
    """Redirect behaviour"""

    def test_no_cookie_redirects_to_login(self, guarded_client):
        response = guarded_client.get("/dashboard")

        assert response.status_code == 302
        assert response.headers["location"] == "/api/auth/login"

    def test_nested_path_redirects(self, guarded_client):
        response = guarded_client.get("/products/42")

        assert response.status_code == 302

    def test_expired_but_signed_session_redirects(self, guarded_client, codec):
        guarded_client.cookies.set("oidc_session", make_token(codec, expires_in=-10))

        response = guarded_client.get("/dashboard")

        assert response.status_code == 302
        assert response.headers["location"] == "/api/auth/login"

    def test_garbage_cookie_redirects(self, guarded_client):
        guarded_client.cookies.set("oidc_session", "not-a-token")

        assert guarded_client.get("/dashboard").status_code == 302

    def test_valid_session_passes(self, guarded_client, codec):
        guarded_client.cookies.set("oidc_session", make_token(codec))

        response = guarded_client.get("/dashboard")

        assert response.status_code == 200
        assert response.json() == {"page": "dashboard"}

    def test_unprotected_path_is_untouched(self, guarded_client):
        response = guarded_client.get("/public")

        assert response.status_code == 200
