"""
NutriLens Backend: CreditTransaction SQLAlchemy Model
=====================================================

What:  Append-only audit log of every change to a user's credit counters.
How:   One row per committed ledger operation, written in the same database
       transaction as the counter update it describes.
Who:   Written and read only by services.credit_ledger.

Amount sign convention:
    consume    → negative (-cost)
    refill     → positive (+amount added to credits_total)
    adjustment → positive (+credits_used that a reset released)

Replaying an account's rows oldest-first from (CREDITS_DEFAULT_TOTAL, 0)
reproduces its current (credits_total, credits_used).

Index on (user_id, created_at DESC, id DESC):
    Serves the only read pattern: "latest N transactions for this user".
    The integer id breaks ties between rows written in the same clock tick.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from nutrilens.database import Base


class TransactionKind(str, enum.Enum):
    CONSUME = "consume"
    REFILL = "refill"
    ADJUSTMENT = "adjustment"


class CreditTransaction(Base):
    """A single immutable ledger event."""

    __tablename__ = "credit_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[TransactionKind] = mapped_column(
        Enum(
            TransactionKind,
            name="credit_transaction_kind",
            values_callable=lambda kinds: [k.value for k in kinds],
        ),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    endpoint_path: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    balance_after: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Remaining credits immediately after this event",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"kind='{self.kind.value}', amount={self.amount}, "
            f"balance_after={self.balance_after})>"
        )


Index(
    "idx_credit_transactions_user_created",
    CreditTransaction.user_id,
    CreditTransaction.created_at.desc(),
    CreditTransaction.id.desc(),
)
