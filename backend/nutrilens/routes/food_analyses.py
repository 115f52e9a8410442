"""
NutriLens Backend: Food Analysis History Routes
===============================================

What:  The caller's stored analyses: list (optionally for one UTC day),
       detail, delete, and the stored photo.
Who:   Mobile client history screens.

Ownership:
    Every lookup is scoped to the caller; another user's analysis id is
    answered with 404.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Response
from fastapi.responses import FileResponse

from nutrilens.dependencies import Analyses, CurrentUser, DbSession
from nutrilens.schemas.analysis import FoodAnalysisListResponse, FoodAnalysisResponse
from nutrilens.schemas.common import ErrorResponse, MessageResponse
from nutrilens.services.analysis_service import to_response

router = APIRouter(prefix="/api/food-analyses", tags=["Food Analyses"])


@router.get(
    "",
    response_model=FoodAnalysisListResponse,
    summary="List the caller's food analyses",
)
async def list_analyses(
    user: CurrentUser,
    db: DbSession,
    analyses: Analyses,
    day: Optional[date] = Query(
        default=None,
        alias="date",
        description="Only analyses created on this UTC day (YYYY-MM-DD)",
    ),
) -> FoodAnalysisListResponse:
    return await analyses.list_analyses(db, user.id, day)


@router.get(
    "/{analysis_id}",
    response_model=FoodAnalysisResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get one food analysis",
)
async def get_analysis(
    analysis_id: UUID,
    response: Response,
    user: CurrentUser,
    db: DbSession,
    analyses: Analyses,
) -> FoodAnalysisResponse:
    analysis = await analyses.get_owned(db, user.id, analysis_id)
    # Analyses are immutable after creation; private since they are per-user
    response.headers["Cache-Control"] = "private, max-age=3600"
    return to_response(analysis)


@router.delete(
    "/{analysis_id}",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Delete a food analysis and its photo",
)
async def delete_analysis(
    analysis_id: UUID,
    user: CurrentUser,
    db: DbSession,
    analyses: Analyses,
) -> MessageResponse:
    await analyses.delete_analysis(db, user.id, analysis_id)
    return MessageResponse(message="Food analysis removed")


@router.get(
    "/{analysis_id}/image",
    responses={200: {"description": "The stored photo"}, 404: {"model": ErrorResponse}},
    summary="Get the photo of a food analysis",
)
async def get_analysis_image(
    analysis_id: UUID,
    user: CurrentUser,
    db: DbSession,
    analyses: Analyses,
) -> FileResponse:
    analysis = await analyses.get_owned(db, user.id, analysis_id)
    path = analyses.files.resolve(analysis.image_path)
    return FileResponse(
        path=str(path),
        media_type=analysis.image_content_type,
        headers={"Cache-Control": "private, max-age=86400"},
    )
