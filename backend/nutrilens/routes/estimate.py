"""
NutriLens Backend: Calorie Estimation Route
===========================================

What:  POST /api/estimate-calories, the paid endpoint.
How:   Reads the multipart `foodImage` field and delegates the whole
       validate → consume → analyze → parse → persist flow to AnalysisService.

Every authenticated call is charged CreditLedger.cost_of(path) credits,
whether the caller used a JWT or an API key.
"""

import logging
from typing import Optional

from fastapi import APIRouter, File, Request, UploadFile

from nutrilens.dependencies import Analyses, CurrentUser, DbSession, Ledger
from nutrilens.exceptions import ValidationError
from nutrilens.schemas.analysis import EstimateResponse
from nutrilens.schemas.common import ErrorResponse
from nutrilens.services.analysis_service import ESTIMATE_ENDPOINT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Estimate"])


@router.post(
    "/estimate-calories",
    response_model=EstimateResponse,
    responses={
        400: {"description": "Missing or invalid image", "model": ErrorResponse},
        401: {"description": "No valid JWT or API key", "model": ErrorResponse},
        429: {"description": "Insufficient credits or rate limit", "model": ErrorResponse},
        502: {"description": "AI response could not be parsed", "model": ErrorResponse},
        503: {"description": "AI service unavailable", "model": ErrorResponse},
    },
    summary="Estimate calories and macronutrients from a food photo",
)
async def estimate_calories(
    request: Request,
    user: CurrentUser,
    db: DbSession,
    ledger: Ledger,
    analyses: Analyses,
    food_image: Optional[UploadFile] = File(default=None, alias="foodImage"),
) -> EstimateResponse:
    if food_image is None:
        raise ValidationError("Please upload an image file", field="foodImage")

    content = await food_image.read()
    logger.info(
        "POST %s by user %s: filename=%s size=%d",
        ESTIMATE_ENDPOINT, user.id, food_image.filename or "unknown", len(content),
    )

    try:
        return await analyses.estimate_calories(
            db=db,
            ledger=ledger,
            user=user,
            filename=food_image.filename or "upload.jpg",
            content=content,
            content_type=food_image.content_type,
            content_length=food_image.size,
            endpoint_path=request.url.path,
        )
    finally:
        await food_image.close()
