"""
NutriLens Backend: FoodAnalysis SQLAlchemy Model
================================================

What:  One persisted calorie estimate produced from an uploaded food photo.
Who:   Created by AnalysisService after a successful Gemini call; listed,
       fetched and deleted through the food-analyses routes.

Storage:
    - food_items: JSON list of normalised item dicts (string nutrient values)
    - totals are integer strings as returned by the nutrition parser
    - image_path: relative path from STORAGE_ROOT (YYYY/MM/DD/<uuid>.<ext>);
      the image itself stays on disk, not in the database
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from nutrilens.database import Base


class FoodAnalysis(Base):
    """Nutrition estimate for a single meal photo."""

    __tablename__ = "food_analyses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    food_items: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    # ── Meal totals ───────────────────────────────────────────────────────
    total_calories: Mapped[str] = mapped_column(String(16), nullable=False, default="0")
    total_protein: Mapped[str] = mapped_column(String(16), nullable=False, default="0")
    total_carbs: Mapped[str] = mapped_column(String(16), nullable=False, default="0")
    total_fat: Mapped[str] = mapped_column(String(16), nullable=False, default="0")
    total_fiber: Mapped[str] = mapped_column(String(16), nullable=False, default="0")
    total_sugar: Mapped[str] = mapped_column(String(16), nullable=False, default="0")
    total_sodium: Mapped[str] = mapped_column(String(16), nullable=False, default="0")

    # ── Assessment ────────────────────────────────────────────────────────
    overall_health_score: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    meal_type: Mapped[str] = mapped_column(String(50), nullable=False, default="Unknown")
    calories_density: Mapped[str] = mapped_column(String(50), nullable=False, default="Unknown")
    portion_recommendation: Mapped[str] = mapped_column(
        Text, nullable=False, default="No specific recommendation"
    )
    description: Mapped[str] = mapped_column(
        Text, nullable=False, default="No description provided."
    )

    # ── Image ─────────────────────────────────────────────────────────────
    image_path: Mapped[str] = mapped_column(String(255), nullable=False)
    image_content_type: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return (
            f"<FoodAnalysis(id={self.id}, user_id={self.user_id}, "
            f"total_calories='{self.total_calories}')>"
        )


Index(
    "idx_food_analyses_user_created",
    FoodAnalysis.user_id,
    FoodAnalysis.created_at.desc(),
)
