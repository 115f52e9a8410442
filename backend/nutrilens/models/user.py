"""
NutriLens Backend: User (Account) SQLAlchemy Model
==================================================

What:  ORM model for the `users` table. Each row is also a credit account.
How:   Inherits from the shared DeclarativeBase; Alembic reads it for migrations.
Who:   UserService (profile, auth) and CreditLedger (credit counters).

Credit counters:
    - credits_total: grant ceiling for this account, raised only by refills
    - credits_used:  consumed so far, reset to 0 by an admin reset
    - remaining = credits_total - credits_used, never negative

    Both counters are written exclusively by services.credit_ledger. The
    CHECK constraints below hold the invariant at the database level as well.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from nutrilens.config import settings
from nutrilens.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """A registered NutriLens user and their prepaid credit account."""

    __tablename__ = "users"

    # ── Identity ──────────────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        comment="Account identifier used by the credit ledger",
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    # Stored lowercased and trimmed by UserService
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # ── Authentication ────────────────────────────────────────────────────
    # NULL for accounts created through Google sign-in only
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    google_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    api_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        index=True,
        default=lambda: str(uuid.uuid4()),
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    # ── Credit Account ────────────────────────────────────────────────────
    credits_total: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=lambda: settings.credits_default_total,
    )
    credits_used: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint("credits_used >= 0", name="ck_users_credits_used_non_negative"),
        CheckConstraint("credits_used <= credits_total", name="ck_users_credits_within_total"),
    )

    @property
    def credits_remaining(self) -> int:
        return self.credits_total - self.credits_used

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, email='{self.email}', "
            f"credits={self.credits_used}/{self.credits_total})>"
        )
