"""
NutriLens Backend: User and Authentication Schemas
==================================================

What:  Request bodies for registration/login/Google sign-in and the user
       profile payloads returned by /api/users.

Security:
    password_hash is never part of any response model. The API key is only
    returned to its owner (profile, login, rotation), never in admin listings.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from nutrilens.schemas.credits import CreditBalance


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class GoogleAuthRequest(BaseModel):
    """Body for POST /api/users/auth/google (native/mobile sign-in)."""
    id_token: str = Field(min_length=1, description="Google ID token from the client SDK")


class UserUpdateRequest(BaseModel):
    """
    Admin update of a user's profile fields.

    Credit counters are deliberately absent; they change only through the
    credit ledger endpoints.
    """
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    is_admin: Optional[bool] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserSummary(BaseModel):
    """Admin listing view of a user."""
    id: uuid.UUID
    name: str
    email: str
    is_admin: bool
    credits: CreditBalance
    created_at: datetime


class UserProfile(UserSummary):
    """The caller's own profile, including their API key."""
    api_key: str


class AuthResponse(BaseModel):
    """Returned by register, login and Google sign-in."""
    user: UserProfile
    token: str = Field(description="JWT bearer token (HS256)")


class ApiKeyResponse(BaseModel):
    message: str = "API key regenerated successfully"
    api_key: str


class UserListResponse(BaseModel):
    users: List[UserSummary]
