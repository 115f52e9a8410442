"""
NutriLens Backend: User Service
===============================

What:  Registration, password and Google sign-in, API key rotation, caller
       resolution, and admin user management.
How:   Stateless; every method receives the request-scoped AsyncSession.
       Commit happens in get_db_session after the route returns.
Who:   /api/users routes and the auth dependencies.

Credit counters:
    New accounts start at credits_total = CREDITS_DEFAULT_TOTAL and
    credits_used = 0. Nothing in this module writes the counters afterwards;
    updates go through CreditLedger only.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nutrilens.config import settings
from nutrilens.exceptions import (
    AuthenticationError,
    DatabaseError,
    NotFoundError,
    ValidationError,
)
from nutrilens.models.user import User
from nutrilens.schemas.credits import CreditBalance
from nutrilens.schemas.user import (
    AuthResponse,
    RegisterRequest,
    UserProfile,
    UserSummary,
    UserUpdateRequest,
)
from nutrilens.security import (
    create_access_token,
    decode_access_token,
    generate_api_key,
    hash_password,
    verify_password,
)
from nutrilens.services.google_auth import GoogleTokenVerifier, google_token_verifier

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def credit_balance(user: User) -> CreditBalance:
    return CreditBalance(
        total=user.credits_total,
        used=user.credits_used,
        remaining=user.credits_total - user.credits_used,
    )


def to_summary(user: User) -> UserSummary:
    return UserSummary(
        id=user.id,
        name=user.name,
        email=user.email,
        is_admin=user.is_admin,
        credits=credit_balance(user),
        created_at=user.created_at,
    )


def to_profile(user: User) -> UserProfile:
    return UserProfile(**to_summary(user).model_dump(), api_key=user.api_key)


class UserService:
    """Business logic for users and authentication."""

    def __init__(self, google_verifier: Optional[GoogleTokenVerifier] = None):
        self.google_verifier = google_verifier or google_token_verifier

    # ── Registration and sign-in ──────────────────────────────────────────

    async def register(self, db: AsyncSession, data: RegisterRequest) -> AuthResponse:
        """
        Create a password account with the default credit grant.

        Raises:
            ValidationError: the email is already registered (→ 400)
        """
        email = normalize_email(data.email)
        if await self._find_by_email(db, email) is not None:
            raise ValidationError("User already exists", field="email")

        user = User(
            name=data.name,
            email=email,
            password_hash=hash_password(data.password),
            api_key=generate_api_key(),
            credits_total=settings.credits_default_total,
            credits_used=0,
        )
        await self._insert(db, user)
        logger.info("Registered user %s (%s)", user.id, email)
        return AuthResponse(user=to_profile(user), token=create_access_token(user.id))

    async def login(self, db: AsyncSession, email: str, password: str) -> AuthResponse:
        user = await self._find_by_email(db, normalize_email(email))
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Failed login for %s", normalize_email(email))
            raise AuthenticationError("Invalid email or password")
        return AuthResponse(user=to_profile(user), token=create_access_token(user.id))

    async def google_sign_in(self, db: AsyncSession, id_token: str) -> AuthResponse:
        """
        Sign in with a Google ID token.

        Lookup order: google id, then email (the Google id is linked to the
        existing account), else a new account with the default credit grant.
        """
        identity = await self.google_verifier.verify(id_token)
        logger.info("Google sign-in: %s (%s)", identity.email, identity.sub)

        try:
            result = await db.execute(
                select(User).where(
                    or_(User.google_id == identity.sub, User.email == identity.email)
                )
            )
            candidates = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error during Google sign-in: %s", e)
            raise DatabaseError(context={"error_type": type(e).__name__}) from e

        user = next((u for u in candidates if u.google_id == identity.sub), None)
        if user is None and candidates:
            user = candidates[0]

        if user is None:
            user = User(
                name=identity.name or identity.email.split("@")[0],
                email=identity.email,
                google_id=identity.sub,
                api_key=generate_api_key(),
                credits_total=settings.credits_default_total,
                credits_used=0,
            )
            await self._insert(db, user)
            logger.info("Created user %s via Google sign-in", user.id)
        elif user.google_id is None:
            user.google_id = identity.sub
            await self._flush(db)
            logger.info("Linked existing account %s to Google", user.id)

        return AuthResponse(user=to_profile(user), token=create_access_token(user.id))

    # ── Caller resolution ─────────────────────────────────────────────────

    async def authenticate_token(self, db: AsyncSession, token: str) -> User:
        payload = decode_access_token(token)
        if payload is None:
            raise AuthenticationError("Not authorized, token failed")
        try:
            user_id = uuid.UUID(payload["sub"])
        except ValueError as e:
            raise AuthenticationError("Not authorized, token failed") from e
        user = await db.get(User, user_id)
        if user is None:
            raise AuthenticationError("Not authorized, user not found")
        return user

    async def authenticate_api_key(self, db: AsyncSession, api_key: str) -> User:
        result = await db.execute(select(User).where(User.api_key == api_key))
        user = result.scalar_one_or_none()
        if user is None:
            raise AuthenticationError("Invalid API key")
        return user

    # ── Self-service ──────────────────────────────────────────────────────

    async def rotate_api_key(self, db: AsyncSession, user: User) -> str:
        user.api_key = generate_api_key()
        await self._flush(db)
        logger.info("Rotated API key for user %s", user.id)
        return user.api_key

    # ── Admin ─────────────────────────────────────────────────────────────

    async def list_users(self, db: AsyncSession) -> List[UserSummary]:
        try:
            result = await db.execute(select(User).order_by(User.created_at.desc()))
        except SQLAlchemyError as e:
            logger.error("Database error listing users: %s", e)
            raise DatabaseError(context={"error_type": type(e).__name__}) from e
        return [to_summary(user) for user in result.scalars().all()]

    async def get_user(self, db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        return user

    async def update_user(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        data: UserUpdateRequest,
    ) -> UserSummary:
        """Admin edit of name, email and admin flag. Credit counters are not editable here."""
        user = await self.get_user(db, user_id)
        if data.name is not None:
            user.name = data.name.strip()
        if data.email is not None:
            email = normalize_email(data.email)
            if email != user.email:
                existing = await self._find_by_email(db, email)
                if existing is not None:
                    raise ValidationError("User already exists", field="email")
                user.email = email
        if data.is_admin is not None:
            user.is_admin = data.is_admin
        await self._flush(db)
        logger.info("Admin updated user %s", user.id)
        return to_summary(user)

    # ── Helpers ───────────────────────────────────────────────────────────

    @staticmethod
    async def _find_by_email(db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    @staticmethod
    async def _insert(db: AsyncSession, user: User) -> None:
        db.add(user)
        await UserService._flush(db)
        # Loads server-side defaults (created_at) without a lazy load later
        await db.refresh(user)

    @staticmethod
    async def _flush(db: AsyncSession) -> None:
        try:
            await db.flush()
        except IntegrityError as e:
            # Concurrent registration with the same email or key
            await db.rollback()
            raise ValidationError("User already exists", field="email") from e
        except SQLAlchemyError as e:
            logger.error("Database error saving user: %s", e)
            raise DatabaseError(context={"error_type": type(e).__name__}) from e


# Singleton instance; UserService holds no per-request state
user_service = UserService()
