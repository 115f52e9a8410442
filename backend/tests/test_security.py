"""
NutriLens Backend: Credential Primitive Tests
=============================================
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt

from nutrilens.config import settings
from nutrilens.security import (
    create_access_token,
    decode_access_token,
    generate_api_key,
    hash_password,
    verify_password,
)


class TestPasswords:

    def test_hash_verifies(self):
        hashed = hash_password("secret123")
        assert hashed != "secret123"
        assert verify_password("secret123", hashed)

    def test_wrong_password(self):
        assert not verify_password("nope", hash_password("secret123"))

    def test_account_without_password(self):
        assert not verify_password("anything", None)


class TestAccessTokens:

    def test_round_trip(self):
        user_id = uuid.uuid4()
        payload = decode_access_token(create_access_token(user_id))
        assert payload["sub"] == str(user_id)
        assert payload["type"] == "access"

    def test_expired_token(self):
        token = create_access_token(uuid.uuid4(), expires_in=timedelta(seconds=-10))
        assert decode_access_token(token) is None

    def test_wrong_secret(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "access", "exp": now + timedelta(hours=1)},
            "some-other-secret-of-sufficient-length",
            algorithm=settings.jwt_algorithm,
        )
        assert decode_access_token(token) is None

    def test_wrong_token_type(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "refresh", "exp": now + timedelta(hours=1)},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        assert decode_access_token(token) is None

    def test_missing_expiry(self):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "access"},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        assert decode_access_token(token) is None

    def test_garbage(self):
        assert decode_access_token("not.a.jwt") is None


def test_api_keys_are_unique():
    assert generate_api_key() != generate_api_key()
