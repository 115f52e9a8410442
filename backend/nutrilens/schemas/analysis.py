"""
NutriLens Backend: Food Analysis Schemas
========================================

What:  The nutrition estimate contract (camelCase on the wire, as the mobile
       client expects) and the stored-analysis views.
How:   Field aliases map snake_case attributes to the camelCase keys produced
       by the Gemini prompt. populate_by_name lets services build them with
       either spelling.
"""

import uuid
from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from nutrilens.schemas.credits import ConsumeResult


_camel = ConfigDict(populate_by_name=True, from_attributes=True)


class FoodItem(BaseModel):
    """One recognised food item. Nutrient values are integer strings."""
    model_config = _camel

    name: str = "Unknown Item"
    calories: str = "0"
    protein_grams: str = Field(default="0", alias="proteinGrams")
    carbs_grams: str = Field(default="0", alias="carbsGrams")
    fat_grams: str = Field(default="0", alias="fatGrams")
    fiber_grams: str = Field(default="0", alias="fiberGrams")
    sugar_grams: str = Field(default="0", alias="sugarGrams")
    sodium_mg: str = Field(default="0", alias="sodiumMg")
    health_score: int = Field(default=5, alias="healthScore")
    dietary_category: List[str] = Field(default_factory=list, alias="dietaryCategory")
    potential_allergens: List[str] = Field(default_factory=list, alias="potentialAllergens")


class NutritionEstimate(BaseModel):
    """Normalised Gemini output for a whole meal."""
    model_config = _camel

    food_items: List[FoodItem] = Field(default_factory=list, alias="foodItems")
    total_calories: str = Field(default="0", alias="totalCalories")
    total_protein: str = Field(default="0", alias="totalProteinGrams")
    total_carbs: str = Field(default="0", alias="totalCarbsGrams")
    total_fat: str = Field(default="0", alias="totalFatGrams")
    total_fiber: str = Field(default="0", alias="totalFiberGrams")
    total_sugar: str = Field(default="0", alias="totalSugarGrams")
    total_sodium: str = Field(default="0", alias="totalSodiumMg")
    overall_health_score: int = Field(default=5, alias="overallHealthScore")
    meal_type: str = Field(default="Unknown", alias="mealType")
    calories_density: str = Field(default="Unknown", alias="caloriesDensity")
    portion_recommendation: str = Field(
        default="No specific recommendation", alias="portionRecommendation"
    )
    description: str = "No description provided."


class FoodAnalysisResponse(NutritionEstimate):
    """A stored analysis, as returned by the food-analyses endpoints."""
    id: uuid.UUID
    image_url: str = Field(alias="imageUrl", description="URL path to fetch the stored photo")
    created_at: datetime = Field(alias="createdAt")


class EstimateResponse(BaseModel):
    """POST /api/estimate-calories result."""
    model_config = _camel

    analysis: FoodAnalysisResponse
    analysis_id: uuid.UUID = Field(alias="analysisId")
    credits: ConsumeResult


class FoodAnalysisListResponse(BaseModel):
    model_config = _camel

    analyses: List[FoodAnalysisResponse]
    count: int
