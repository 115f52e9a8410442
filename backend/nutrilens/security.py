"""
NutriLens Backend: Credential Primitives
========================================

What:  Password hashing, JWT issue/verify, and API key generation.
How:   bcrypt through pwdlib, HS256 tokens through PyJWT. Secrets and expiry
       come from settings.
Who:   UserService (register, login, key rotation) and dependencies
       (resolving the caller from a bearer token).
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from pwdlib import PasswordHash
from pwdlib.hashers.bcrypt import BcryptHasher

from nutrilens.config import settings

password_hasher = PasswordHash((BcryptHasher(),))


def hash_password(password: str) -> str:
    return password_hasher.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """False for accounts without a password (Google-only sign-in)."""
    if not password_hash:
        return False
    return password_hasher.verify(password, password_hash)


def generate_api_key() -> str:
    return str(uuid.uuid4())


def create_access_token(user_id: uuid.UUID, expires_in: Optional[timedelta] = None) -> str:
    """Issue an HS256 token whose `sub` is the user id."""
    now = datetime.now(timezone.utc)
    exp_time = now + (expires_in or timedelta(days=settings.jwt_expire_days))
    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(exp_time.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verified claims, or None when the token is expired, forged or malformed."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.InvalidTokenError:
        return None
    if payload.get("type") != "access":
        return None
    return payload
