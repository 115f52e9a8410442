"""
NutriLens Backend: Credit Ledger Schemas
========================================

What:  Result objects returned by CreditLedger and the /api/credits payloads.
How:   Ledger results are plain Pydantic models so routes can return them
       directly and tests can compare them by value.

Balance vocabulary:
    total     = credits_total (grant ceiling, raised only by refills)
    used      = credits_used (reset to 0 by admins)
    remaining = total - used (never negative)
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from nutrilens.models.credit_transaction import TransactionKind


# ══════════════════════════════════════════════════════════════════════════
# Ledger operation results
# ══════════════════════════════════════════════════════════════════════════


class ConsumeResult(BaseModel):
    """Counters after a successful consume."""
    remaining: int = Field(ge=0)
    used: int = Field(ge=0)


class AddCreditsResult(BaseModel):
    """Counters after a successful refill."""
    credits_total: int = Field(ge=0)
    remaining: int = Field(ge=0)


class ResetResult(BaseModel):
    """Counters before and after an admin reset."""
    previous_used: int = Field(ge=0)
    current_used: int = Field(default=0, ge=0)
    remaining: int = Field(ge=0)


class CreditBalance(BaseModel):
    total: int = Field(description="credits_total for the account")
    used: int = Field(description="credits_used for the account")
    remaining: int = Field(description="total - used")


# ══════════════════════════════════════════════════════════════════════════
# Transactions
# ══════════════════════════════════════════════════════════════════════════


class CreditTransactionResponse(BaseModel):
    """One ledger event as exposed by the history endpoints."""
    id: int
    user_id: uuid.UUID
    amount: int = Field(description="Negative for consume, positive for refill/adjustment")
    kind: TransactionKind
    description: str
    endpoint_path: Optional[str] = None
    balance_after: int = Field(description="Remaining credits immediately after this event")
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditSummaryResponse(BaseModel):
    """GET /api/credits: fresh balance plus the latest transactions."""
    credits: CreditBalance
    transactions: List[CreditTransactionResponse]


class AdminTransactionResponse(CreditTransactionResponse):
    """A transaction in the admin view, with the account holder attached."""
    user_name: Optional[str] = None
    user_email: Optional[str] = None


class TransactionPage(BaseModel):
    """GET /api/credits/all: every account's transactions, newest first."""
    transactions: List[AdminTransactionResponse]
    total: int = Field(description="Number of transactions across all pages")
    page: int
    pages: int


# ══════════════════════════════════════════════════════════════════════════
# Request bodies
# ══════════════════════════════════════════════════════════════════════════


class AddCreditsRequest(BaseModel):
    # Positivity is enforced by the ledger so the error maps to the 400 envelope
    amount: int = Field(description="Credits to add to credits_total (positive)")


class AddCreditsResponse(BaseModel):
    message: str
    credits: CreditBalance


class ResetCreditsResponse(BaseModel):
    message: str
    previous_used: int
    credits: CreditBalance
