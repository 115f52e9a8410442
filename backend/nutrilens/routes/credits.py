"""
NutriLens Backend: Credit Route Handlers
========================================

What:  Balance and history for the caller, plus admin refill, reset and audit.
How:   Thin handlers over CreditLedger; ledger errors are rendered by the
       global exception handlers (429 / 404 / 400 / 500).

Routes:
    GET  /api/credits                     caller's balance + latest transactions
    GET  /api/credits/all                 (admin) every transaction, paginated
    POST /api/credits/{user_id}/add       (admin) refill
    POST /api/credits/{user_id}/reset     (admin) reset credits_used to 0
    GET  /api/credits/{user_id}/history   (admin) one account's transactions
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Query

from nutrilens.config import settings
from nutrilens.dependencies import AdminUser, CurrentUser, Ledger
from nutrilens.schemas.common import ErrorResponse
from nutrilens.schemas.credits import (
    AddCreditsRequest,
    AddCreditsResponse,
    CreditBalance,
    CreditSummaryResponse,
    CreditTransactionResponse,
    ResetCreditsResponse,
    TransactionPage,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["Credits"])


@router.get(
    "",
    response_model=CreditSummaryResponse,
    summary="Current balance and recent credit transactions",
)
async def get_my_credits(user: CurrentUser, ledger: Ledger) -> CreditSummaryResponse:
    # Fresh read from the ledger; the request's user row may predate a consume
    return await ledger.get_summary(user.id)


# Declared before /{user_id}/... so "all" is never parsed as a user id
@router.get(
    "/all",
    response_model=TransactionPage,
    responses={403: {"model": ErrorResponse}},
    summary="All credit transactions (admin)",
)
async def list_all_transactions(
    admin: AdminUser,
    ledger: Ledger,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
) -> TransactionPage:
    return await ledger.list_all_transactions(page=page, limit=limit)


@router.post(
    "/{user_id}/add",
    response_model=AddCreditsResponse,
    responses={
        400: {"description": "Invalid amount or credit ceiling exceeded", "model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Add credits to a user (admin)",
)
async def add_credits(
    user_id: UUID,
    body: AddCreditsRequest,
    admin: AdminUser,
    ledger: Ledger,
) -> AddCreditsResponse:
    result = await ledger.add_credits(
        user_id,
        body.amount,
        description=f"Admin credit addition by {admin.name}",
    )
    used = result.credits_total - result.remaining
    logger.info("Admin %s added %d credits to %s", admin.id, body.amount, user_id)
    return AddCreditsResponse(
        message=f"Successfully added {body.amount} credits",
        credits=CreditBalance(total=result.credits_total, used=used, remaining=result.remaining),
    )


@router.post(
    "/{user_id}/reset",
    response_model=ResetCreditsResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Reset a user's used credits (admin)",
)
async def reset_credits(user_id: UUID, admin: AdminUser, ledger: Ledger) -> ResetCreditsResponse:
    result = await ledger.reset_used(user_id)
    logger.info("Admin %s reset credits for %s", admin.id, user_id)
    return ResetCreditsResponse(
        message="API credits reset successfully",
        previous_used=result.previous_used,
        credits=CreditBalance(
            total=result.remaining, used=result.current_used, remaining=result.remaining
        ),
    )


@router.get(
    "/{user_id}/history",
    response_model=List[CreditTransactionResponse],
    responses={403: {"model": ErrorResponse}},
    summary="A user's credit transactions (admin)",
)
async def get_user_history(
    user_id: UUID,
    admin: AdminUser,
    ledger: Ledger,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
) -> List[CreditTransactionResponse]:
    return await ledger.get_history(user_id, limit or settings.credits_admin_history_limit)
