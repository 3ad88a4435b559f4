"""
Unit Tests for Product Routes
=============================

Tests for oidc_rp/products/routes.py
"""

import time

import pytest

from oidc_rp.models import SessionRecord, UserIdentity


@pytest.fixture
def session_cookie(app):
    now = int(time.time())
    record = SessionRecord(
        user=UserIdentity(sub="mock-user-123", name="Mock User"),
        access_token="mock-access-token-xyz",
        expires_at=now + 3600,
        issued_at=now,
    )
    return app.state.session_codec.encode(record)


def test_api_products_requires_session(client):
    response = client.get("/api/products")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_api_products_rejects_invalid_cookie(client):
    client.cookies.set("oidc_session", "forged.session.token")

    response = client.get("/api/products")

    assert response.status_code == 401


def test_api_products_with_session(client, session_cookie):
    client.cookies.set("oidc_session", session_cookie)

    response = client.get("/api/products")

    assert response.status_code == 200
    products = response.json()["products"]
    assert [p["id"] for p in products] == ["p-1001", "p-1002", "p-1003"]
    assert products[0] == {
        "id": "p-1001",
        "name": "Wireless Headphones",
        "price": 129.99,
        "description": "Noise-cancelling over-ear headphones",
    }


def test_api_products_is_not_redirected_by_guard(client):
    response = client.get("/api/products", follow_redirects=False)

    assert response.status_code == 401


def test_products_page_with_session(client, session_cookie):
    client.cookies.set("oidc_session", session_cookie)

    response = client.get("/products", follow_redirects=False)

    assert response.status_code == 200
    assert response.json()["user"] == "Mock User"
    assert len(response.json()["products"]) == 3


def test_products_page_without_session(client):
    response = client.get("/products", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/api/auth/login"
