"""
Session Token Tests

Tests for oidc_rp/auth/session.py: encoding, verification, expiry and
tamper detection, plus the cookie helpers.
"""

import time

import jwt
import pytest
from fastapi import Response
from pydantic import ValidationError

from oidc_rp.auth.session import (
    SESSION_ALGORITHM,
    InvalidSession,
    SessionCodec,
    ValidSession,
    clear_session_cookie,
    set_session_cookie,
)
from oidc_rp.errors import SessionError, SessionVerificationError
from oidc_rp.models import SessionRecord, UserIdentity
from oidc_rp.tests.conftest import TEST_SESSION_SECRET


def make_record(expires_in: int = 3600, sub: str = "mock-user-123") -> SessionRecord:
    now = int(time.time())
    return SessionRecord(
        user=UserIdentity(sub=sub, name="Mock User", email="mockuser@example.com", locale="en"),
        access_token="mock-access-token-xyz",
        id_token="header.payload.signature",
        expires_at=now + expires_in,
        issued_at=now,
    )


class TestSessionCodec:
    """Round trip, expiry and tamper detection"""

    def test_roundtrip(self, codec):
        record = make_record()

        decoded = codec.decode(codec.encode(record))

        assert decoded == record
        assert decoded.user.to_claims()["locale"] == "en"

    def test_roundtrip_keeps_null_claims(self, codec):
        now = int(time.time())
        record = SessionRecord(
            user=UserIdentity(sub="mock-user-123", middle_name=None),
            access_token="mock-access-token-xyz",
            expires_at=now + 3600,
            issued_at=now,
        )

        decoded = codec.decode(codec.encode(record))

        assert decoded == record
        assert "middle_name" in decoded.user.model_dump()

    def test_issued_at_is_required(self):
        with pytest.raises(ValidationError):
            SessionRecord(
                user=UserIdentity(sub="mock-user-123"),
                access_token="mock-access-token-xyz",
                expires_at=int(time.time()) + 3600,
            )

    def test_iat_is_not_taken_from_clock(self):
        record = make_record()
        codec = SessionCodec(TEST_SESSION_SECRET, clock=lambda: record.issued_at + 500)

        claims = jwt.decode(
            codec.encode(record),
            TEST_SESSION_SECRET,
            algorithms=[SESSION_ALGORITHM],
            issuer="oidc-relying-party",
        )

        assert claims["iat"] == record.issued_at

    def test_token_exp_equals_session_expiry(self, codec):
        record = make_record()
        claims = jwt.decode(
            codec.encode(record),
            TEST_SESSION_SECRET,
            algorithms=[SESSION_ALGORITHM],
            issuer="oidc-relying-party",
        )

        assert claims["exp"] == record.expires_at
        assert claims["sub"] == "mock-user-123"
        assert claims["iat"] == record.issued_at

    def test_expired_session_is_rejected(self, codec):
        token = codec.encode(make_record(expires_in=-5))

        assert codec.decode(token) is None
        assert codec.verify(token) == InvalidSession("expired")

    def test_expiry_uses_injected_clock(self):
        record = make_record(expires_in=60)
        issuing = SessionCodec(TEST_SESSION_SECRET)
        token = issuing.encode(record)

        later = SessionCodec(TEST_SESSION_SECRET, clock=lambda: record.expires_at + 1)
        result = later.verify(token)

        assert isinstance(result, InvalidSession)

    def test_tampered_token_is_rejected(self, codec):
        token = codec.encode(make_record())
        header, payload, signature = token.split(".")
        flipped = "A" if signature[10] != "A" else "B"
        tampered = ".".join([header, payload, signature[:10] + flipped + signature[11:]])

        assert codec.decode(tampered) is None

    def test_forged_claims_are_rejected(self, codec):
        forged = jwt.encode(
            {"sub": "admin", "user": {"sub": "admin"}, "access_token": "x",
             "expires_at": int(time.time()) + 3600, "exp": int(time.time()) + 3600,
             "iat": int(time.time()), "iss": "oidc-relying-party"},
            "some-other-secret-of-sufficient-length",
            algorithm=SESSION_ALGORITHM,
        )

        assert codec.decode(forged) is None

    def test_wrong_issuer_is_rejected(self):
        token = SessionCodec(TEST_SESSION_SECRET, issuer="someone-else").encode(make_record())
        assert SessionCodec(TEST_SESSION_SECRET).decode(token) is None

    def test_missing_token(self, codec):
        assert codec.decode(None) is None
        assert codec.decode("") is None
        assert codec.decode("garbage") is None

    def test_malformed_payload(self, codec):
        now = int(time.time())
        token = jwt.encode(
            {"sub": "mock-user-123", "user": {"sub": "mock-user-123"}, "exp": now + 60,
             "iat": now, "iss": "oidc-relying-party", "expires_at": now + 60},
            TEST_SESSION_SECRET,
            algorithm=SESSION_ALGORITHM,
        )

        assert codec.verify(token) == InvalidSession("malformed")

    def test_inconsistent_payload(self, codec):
        now = int(time.time())
        token = jwt.encode(
            {"sub": "mock-user-123", "user": {"sub": "someone-else"}, "access_token": "x",
             "exp": now + 60, "iat": now, "iss": "oidc-relying-party", "expires_at": now + 60},
            TEST_SESSION_SECRET,
            algorithm=SESSION_ALGORITHM,
        )

        assert codec.verify(token) == InvalidSession("inconsistent")

    def test_valid_result(self, codec):
        record = make_record()
        assert codec.verify(codec.encode(record)) == ValidSession(record)

    def test_require_raises_on_invalid_token(self, codec):
        with pytest.raises(SessionVerificationError):
            codec.require("garbage")

        record = make_record()
        assert codec.require(codec.encode(record)) == record

    def test_encode_requires_subject(self, codec):
        record = make_record()
        record.user.sub = None

        with pytest.raises(SessionError):
            codec.encode(record)

    def test_empty_secret_is_refused(self):
        with pytest.raises(SessionError):
            SessionCodec("")


class TestSessionCookie:
    """Cookie attributes"""

    def test_set_cookie_lives_as_long_as_session(self, settings):
        record = make_record(expires_in=1800)
        response = Response()

        set_session_cookie(response, "token-value", record, settings, now=record.issued_at)

        header = response.headers["set-cookie"]
        assert header.startswith("oidc_session=token-value")
        assert "Max-Age=1800" in header
        assert "HttpOnly" in header
        assert "Path=/" in header
        assert "SameSite=lax" in header
        assert "Secure" not in header

    def test_secure_in_production(self, settings):
        settings.APP_ENV = "production"
        response = Response()

        set_session_cookie(response, "t", make_record(), settings)

        assert "Secure" in response.headers["set-cookie"]

    def test_clear_cookie(self, settings):
        response = Response()

        clear_session_cookie(response, settings)

        header = response.headers["set-cookie"]
        assert header.startswith("oidc_session=")
        assert "Max-Age=0" in header
