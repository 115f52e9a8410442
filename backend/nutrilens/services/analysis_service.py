"""
NutriLens Backend: Analysis Service (Business Logic Orchestrator)
=================================================================

What:  Runs the paid calorie-estimation workflow and manages stored analyses.
How:   Composes FileService, CreditLedger, the LLM service, the nutrition
       parser, and the request-scoped database session.
Who:   Called by the estimate and food-analyses route handlers.

Orchestration Flow (POST /api/estimate-calories):
    ┌──────────┐   ┌────────────┐   ┌──────────┐   ┌──────────┐   ┌────────┐
    │ Validate │──▶│  Consume   │──▶│  Gemini  │──▶│  Parse   │──▶│ Store  │
    │ & Store  │   │  credits   │   │ (vision) │   │  JSON    │   │ (DB)   │
    └──────────┘   └────────────┘   └──────────┘   └──────────┘   └────────┘

    Failure handling:
    - Validation fails     → 400, nothing charged, nothing stored
    - Consume rejected     → stored image removed, ledger error propagates
                             (429 insufficient, 404 account, 500 persistence)
    - Gemini / parse fails → stored image removed, error propagates;
                             the consumed credit stays consumed
    - DB save or commit    → stored image removed, DatabaseError (500)
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nutrilens.exceptions import DatabaseError, NotFoundError
from nutrilens.models.food_analysis import FoodAnalysis
from nutrilens.models.user import User
from nutrilens.schemas.analysis import (
    EstimateResponse,
    FoodAnalysisListResponse,
    FoodAnalysisResponse,
    FoodItem,
    NutritionEstimate,
)
from nutrilens.services.credit_ledger import CreditLedger
from nutrilens.services.file_service import FileService, file_service
from nutrilens.services.gemini_service import gemini_service
from nutrilens.services.llm_base import LLMService
from nutrilens.services.nutrition_parser import parse_nutrition_response

logger = logging.getLogger(__name__)

ESTIMATE_ENDPOINT = "/api/estimate-calories"


def to_response(analysis: FoodAnalysis) -> FoodAnalysisResponse:
    return FoodAnalysisResponse(
        id=analysis.id,
        image_url=f"/api/food-analyses/{analysis.id}/image",
        created_at=analysis.created_at,
        food_items=[FoodItem.model_validate(item) for item in analysis.food_items or []],
        total_calories=analysis.total_calories,
        total_protein=analysis.total_protein,
        total_carbs=analysis.total_carbs,
        total_fat=analysis.total_fat,
        total_fiber=analysis.total_fiber,
        total_sugar=analysis.total_sugar,
        total_sodium=analysis.total_sodium,
        overall_health_score=analysis.overall_health_score,
        meal_type=analysis.meal_type,
        calories_density=analysis.calories_density,
        portion_recommendation=analysis.portion_recommendation,
        description=analysis.description,
    )


def utc_day_bounds(day: date):
    """[start, end) of a calendar day in UTC."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class AnalysisService:
    """
    Business logic for food analyses.

    Stateless apart from its collaborators; tests pass a mock LLM service and
    a FileService rooted in a temporary directory.
    """

    def __init__(
        self,
        llm: Optional[LLMService] = None,
        files: Optional[FileService] = None,
    ):
        self.llm = llm or gemini_service
        self.files = files or file_service

    async def estimate_calories(
        self,
        db: AsyncSession,
        ledger: CreditLedger,
        user: User,
        filename: str,
        content: bytes,
        content_type: Optional[str],
        content_length: Optional[int] = None,
        endpoint_path: str = ESTIMATE_ENDPOINT,
    ) -> EstimateResponse:
        """
        Validate → consume → analyze → parse → persist.

        Raises:
            ValidationError:          bad upload (nothing charged)
            InsufficientCreditsError: not enough credits (nothing charged)
            AccountNotFoundError:     the caller's account vanished
            PersistenceFailureError:  ledger write failed (nothing charged)
            LLMServiceError / CircuitBreakerOpenError: Gemini unavailable
            AIResponseFormatError:    Gemini answered with malformed JSON
            DatabaseError:            the analysis could not be saved
        """
        absolute_path, relative_path, mime_type = await self.files.validate_and_store(
            filename=filename,
            content=content,
            content_type=content_type,
            content_length=content_length,
        )

        try:
            credits = await ledger.consume(
                user.id,
                ledger.cost_of(endpoint_path),
                description=f"API request to {endpoint_path}",
                endpoint_path=endpoint_path,
            )
            logger.info(
                "Credit consumed for user %s: remaining=%d", user.id, credits.remaining
            )

            raw_text = await self.llm.analyze_image(absolute_path, mime_type)
            estimate = parse_nutrition_response(raw_text)
            analysis = await self._save(db, user.id, estimate, relative_path, mime_type)
            await self._commit(db, "save", user_id=str(user.id))
        except Exception:
            await self.files.cleanup_file(absolute_path)
            raise

        logger.info("Food analysis %s saved for user %s", analysis.id, user.id)
        response = to_response(analysis)
        return EstimateResponse(analysis=response, analysis_id=analysis.id, credits=credits)

    async def _save(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        estimate: NutritionEstimate,
        relative_path: str,
        mime_type: str,
    ) -> FoodAnalysis:
        analysis = FoodAnalysis(
            user_id=user_id,
            food_items=[item.model_dump(by_alias=True) for item in estimate.food_items],
            total_calories=estimate.total_calories,
            total_protein=estimate.total_protein,
            total_carbs=estimate.total_carbs,
            total_fat=estimate.total_fat,
            total_fiber=estimate.total_fiber,
            total_sugar=estimate.total_sugar,
            total_sodium=estimate.total_sodium,
            overall_health_score=estimate.overall_health_score,
            meal_type=estimate.meal_type,
            calories_density=estimate.calories_density,
            portion_recommendation=estimate.portion_recommendation,
            description=estimate.description,
            image_path=relative_path,
            image_content_type=mime_type,
        )
        try:
            db.add(analysis)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Error saving food analysis for user %s: %s", user_id, e)
            raise DatabaseError(
                message="Analysis results could not be saved. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e
        return analysis

    @staticmethod
    async def _commit(db: AsyncSession, action: str, **context: str) -> None:
        """
        Commit the request session before touching stored images.

        get_db_session commits again after the handler; that second commit
        has nothing left to write.
        """
        try:
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Commit failed during analysis %s (%s): %s", action, context, e)
            raise DatabaseError(
                message=f"Could not {action} the analysis. Please try again.",
                context={"error_type": type(e).__name__, **context},
            ) from e

    # ── Stored analyses ───────────────────────────────────────────────────

    async def list_analyses(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        day: Optional[date] = None,
    ) -> FoodAnalysisListResponse:
        """Caller's analyses, newest first, optionally limited to one UTC day."""
        query = select(FoodAnalysis).where(FoodAnalysis.user_id == user_id)
        if day is not None:
            start, end = utc_day_bounds(day)
            query = query.where(FoodAnalysis.created_at >= start, FoodAnalysis.created_at < end)
        query = query.order_by(FoodAnalysis.created_at.desc())

        try:
            result = await db.execute(query)
            analyses = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing analyses for %s: %s", user_id, e)
            raise DatabaseError(
                message="Could not retrieve food analyses. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        items: List[FoodAnalysisResponse] = [to_response(a) for a in analyses]
        return FoodAnalysisListResponse(analyses=items, count=len(items))

    async def get_owned(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        analysis_id: uuid.UUID,
    ) -> FoodAnalysis:
        """
        The analysis if it exists and belongs to the caller.

        Another user's analysis is reported as not found so ids cannot be probed.
        """
        try:
            analysis = await db.get(FoodAnalysis, analysis_id)
        except SQLAlchemyError as e:
            logger.error("Database error fetching analysis %s: %s", analysis_id, e)
            raise DatabaseError(
                message="Could not retrieve the analysis. Please try again.",
                context={"analysis_id": str(analysis_id)},
            ) from e
        if analysis is None or analysis.user_id != user_id:
            raise NotFoundError(resource="food analysis", resource_id=str(analysis_id))
        return analysis

    async def delete_analysis(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        analysis_id: uuid.UUID,
    ) -> None:
        analysis = await self.get_owned(db, user_id, analysis_id)
        image_path = analysis.image_path
        await db.delete(analysis)
        # The photo goes only once the row is gone for good
        await self._commit(db, "delete", analysis_id=str(analysis_id))
        await self.files.cleanup_file(image_path)
        logger.info("Deleted food analysis %s for user %s", analysis_id, user_id)


analysis_service = AnalysisService()
