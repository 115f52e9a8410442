"""
NutriLens Backend: Gemini Nutrition Response Parser
===================================================

What:  Turns Gemini's free-text answer into a NutritionEstimate.
How:   1. Strip a surrounding ```json / ``` markdown fence
       2. json.loads (failure → AIResponseFormatError, 502)
       3. Normalise every nutrient string to an integer string
       4. Fill missing fields with defaults

Nutrient normalisation (average_range):
    "Approx. 500-600 kcal" → "550"   (rounded mean of a range)
    "Approx. 31.6g"        → "32"    (first number, rounded half up)
    "N/A", "Unknown", ""   → "0"
    Results are never negative.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List

from nutrilens.exceptions import AIResponseFormatError
from nutrilens.schemas.analysis import FoodItem, NutritionEstimate

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"^```json\s*(.*?)\s*```$", re.MULTILINE | re.DOTALL)
_ANY_FENCE = re.compile(r"^```\s*(.*?)\s*```$", re.MULTILINE | re.DOTALL)
_RANGE = re.compile(r"(\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")

_NON_NUMERIC = {"n/a", "unknown", "unable to estimate calories", "insufficient data"}

ITEM_NUTRIENTS = (
    "calories",
    "proteinGrams",
    "carbsGrams",
    "fatGrams",
    "fiberGrams",
    "sugarGrams",
    "sodiumMg",
)
TOTAL_NUTRIENTS = (
    "totalCalories",
    "totalProteinGrams",
    "totalCarbsGrams",
    "totalFatGrams",
    "totalFiberGrams",
    "totalSugarGrams",
    "totalSodiumMg",
)


def _round_half_up(value: float) -> int:
    if not math.isfinite(value):
        return 0
    return max(0, int(math.floor(value + 0.5)))


def strip_code_fence(text: str) -> str:
    """Return the body of a ```json (or bare ```) fence, else the stripped text."""
    for pattern in (_JSON_FENCE, _ANY_FENCE):
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1).strip()
    return text.strip()


def average_range(value: Any) -> str:
    """Normalise one nutrient value to a non-negative integer string."""
    if isinstance(value, bool) or value is None:
        return "0"
    if isinstance(value, (int, float)):
        try:
            return str(_round_half_up(float(value)))
        except OverflowError:
            return "0"
    if not isinstance(value, str):
        return "0"
    text = value.strip()
    if not text or text.lower() in _NON_NUMERIC:
        return "0"

    match = _RANGE.search(text)
    if match:
        low, high = float(match.group(1)), float(match.group(2))
        return str(_round_half_up((low + high) / 2))

    match = _NUMBER.search(text)
    if match:
        return str(_round_half_up(float(match.group(0))))
    return "0"


def _health_score(value: Any) -> int:
    if isinstance(value, bool):
        return 5
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 5
    if not math.isfinite(number):
        return 5
    return int(round(number)) or 5


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _normalise_item(raw: Any) -> FoodItem:
    item: Dict[str, Any] = raw if isinstance(raw, dict) else {}
    fields = {key: average_range(item.get(key)) for key in ITEM_NUTRIENTS}
    return FoodItem(
        name=_text(item.get("name"), "Unknown Item"),
        healthScore=_health_score(item.get("healthScore")),
        dietaryCategory=_string_list(item.get("dietaryCategory")),
        potentialAllergens=_string_list(item.get("potentialAllergens")),
        **fields,
    )


def parse_nutrition_response(raw_text: str) -> NutritionEstimate:
    """
    Parse and normalise Gemini's answer.

    Raises:
        AIResponseFormatError: the text is not a JSON object
    """
    body = strip_code_fence(raw_text or "")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        logger.error("Gemini response is not valid JSON: %s (first 200 chars: %r)", e, body[:200])
        raise AIResponseFormatError(context={"reason": str(e)}) from e
    if not isinstance(data, dict):
        logger.error("Gemini response JSON is a %s, expected an object", type(data).__name__)
        raise AIResponseFormatError(context={"reason": f"top-level {type(data).__name__}"})

    items = data.get("foodItems")
    totals = {key: average_range(data.get(key)) for key in TOTAL_NUTRIENTS}
    return NutritionEstimate(
        foodItems=[_normalise_item(item) for item in items] if isinstance(items, list) else [],
        overallHealthScore=_health_score(data.get("overallHealthScore")),
        mealType=_text(data.get("mealType"), "Unknown"),
        caloriesDensity=_text(data.get("caloriesDensity"), "Unknown"),
        portionRecommendation=_text(data.get("portionRecommendation"), "No specific recommendation"),
        description=_text(data.get("description"), "No description provided."),
        **totals,
    )
