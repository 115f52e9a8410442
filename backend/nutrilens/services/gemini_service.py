"""
NutriLens Backend: Google Gemini Service Implementation
=======================================================

What:  Concrete LLM service asking Gemini Vision for a per-item nutrition
       estimate of a food photo.
How:   Sends the image bytes inline with a structured JSON prompt, wrapped in
       tenacity retries and a circuit breaker.
Who:   Instantiated once at import; called by AnalysisService per request.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker to fail fast while Gemini is down
    3. Per-call timeout on the generation request

Billing note:
    The credit for the request has already been consumed when this service is
    called. Failures here are reported to the client but not refunded.
"""

import logging
import math
import time
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from nutrilens.config import settings
from nutrilens.exceptions import CircuitBreakerOpenError, LLMServiceError
from nutrilens.middleware.request_id import request_id_var
from nutrilens.services.llm_base import LLMService

logger = logging.getLogger(__name__)

GENERATION_TIMEOUT_SECONDS = 60


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Fail-fast guard in front of Gemini.

    closed     calls go through; consecutive failures are counted
    open       calls are refused with CircuitBreakerOpenError until
               recovery_timeout seconds have passed since the last failure
    half_open  one probe call is let through; success closes the circuit,
               failure opens it again

    The estimate endpoint charges its credit before Gemini is called, so an
    open circuit is also what stops a Gemini outage from draining balances
    at full request rate.

    Per process; workers do not share state.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def seconds_until_probe(self) -> float:
        if self.last_failure_time is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (time.monotonic() - self.last_failure_time))

    def can_execute(self) -> bool:
        """
        True when a call may proceed; moves an expired OPEN circuit to HALF_OPEN.

        Raises:
            CircuitBreakerOpenError: the circuit is OPEN and still cooling down.
        """
        if self.state != self.OPEN:
            return True

        wait = self.seconds_until_probe()
        if wait > 0:
            raise CircuitBreakerOpenError(recovery_time=math.ceil(wait))

        logger.info("Gemini circuit half-open; letting one probe request through")
        self.state = self.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self.state != self.CLOSED:
            logger.info("Gemini circuit closed again after a successful probe")
        self.state = self.CLOSED
        self.failure_count = 0
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != self.OPEN:
                logger.warning(
                    "Gemini circuit open (%d failures, state was %s); refusing calls for %ds",
                    self.failure_count, self.state, self.recovery_timeout,
                )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Gemini Service
# ══════════════════════════════════════════════════════════════════════════

class GeminiService(LLMService):
    """
    Gemini Vision nutrition estimator.

    A failed generation is retried RETRY_MAX_ATTEMPTS times with jittered
    exponential backoff. Only a fully failed call counts against the circuit
    breaker, which then answers 503 until CB_RECOVERY_TIMEOUT has passed.
    """

    NUTRITION_PROMPT = """Analyze the provided food image. You MUST return a JSON object with the following structure:
1.  "foodItems": An array of objects. Each object in this array MUST contain:
    a.  "name": The identified food item (e.g., "Apple", "Slice of Pizza"). Be specific.
    b.  "calories": Estimated calories for that single item (e.g., "Approx. 95 kcal").
    c.  "proteinGrams": Estimated protein in grams (e.g., "Approx. 0.3g", "12g"). If unknown, use "N/A".
    d.  "carbsGrams": Estimated carbohydrates in grams. If unknown, use "N/A".
    e.  "fatGrams": Estimated fat in grams. If unknown, use "N/A".
    f.  "fiberGrams": Estimated fiber in grams. If unknown, use "N/A".
    g.  "sugarGrams": Estimated sugar in grams. If unknown, use "N/A".
    h.  "sodiumMg": Estimated sodium in milligrams. If unknown, use "N/A".
    i.  "healthScore": A number from 1-10, where 1 is least healthy and 10 is most healthy.
    j.  "dietaryCategory": An array of dietary categories (e.g., ["Vegetarian", "Low-carb"]). Empty array if none apply.
    k.  "potentialAllergens": An array of common allergens that may be present (e.g., ["Nuts", "Dairy"]). Empty array if none.
2.  "totalCalories": Estimated total calories for the entire meal (e.g., "Approx. 500-600 kcal").
3.  "totalProteinGrams": Total protein in grams for the meal. If unknown, use "N/A".
4.  "totalCarbsGrams": Total carbohydrates in grams for the meal. If unknown, use "N/A".
5.  "totalFatGrams": Total fat in grams for the meal. If unknown, use "N/A".
6.  "totalFiberGrams": Total fiber in grams for the meal. If unknown, use "N/A".
7.  "totalSugarGrams": Total sugar in grams for the meal. If unknown, use "N/A".
8.  "totalSodiumMg": Total sodium in milligrams for the meal. If unknown, use "N/A".
9.  "overallHealthScore": A number from 1-10 for the overall healthiness of the meal.
10. "mealType": The most appropriate meal type (e.g., "Breakfast", "Lunch", "Dinner", "Snack").
11. "caloriesDensity": Calories per gram for the overall meal (e.g., "Medium density (2.5 kcal/g)").
12. "portionRecommendation": A suggested healthy portion size.
13. "description": A brief description of the meal and its nutritional characteristics.

If multiple distinct food items are visible, list each one separately in "foodItems".
If you cannot identify items or estimate nutrients, use "Unknown food item" or "N/A",
but always keep the JSON structure. Return only the JSON object. Provide all text in English."""

    SAFETY_SETTINGS = {
        HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
        HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
        HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
        HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    }

    def __init__(self):
        # Placeholder keys are left unconfigured so startup works without Gemini
        if settings.gemini_api_key and settings.gemini_api_key != "your_gemini_api_key_here":
            genai.configure(api_key=settings.gemini_api_key)

        self.model = genai.GenerativeModel(settings.gemini_model, safety_settings=self.SAFETY_SETTINGS)
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        logger.info(
            "Gemini nutrition estimator ready: model=%s retries=%d breaker=%d/%ds",
            settings.gemini_model,
            settings.retry_max_attempts,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    async def analyze_image(self, image_path: str, mime_type: str) -> str:
        """
        Ask Gemini for a nutrition estimate of the stored image.

        Returns the raw answer text (possibly empty); parsing is the caller's job.

        Raises:
            CircuitBreakerOpenError: Gemini failed repeatedly and is cooling down
            LLMServiceError: every retry attempt failed
        """
        # Same id as the access log and the credit consumed for this request
        request_id = request_id_var.get("") or uuid.uuid4().hex[:8]

        self.circuit_breaker.can_execute()
        logger.info("[%s] Gemini nutrition analysis of %s (%s)", request_id, Path(image_path).name, mime_type)

        try:
            answer = await self._call_gemini_with_retry(image_path, mime_type, request_id)
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] Gemini analysis failed after %d attempts: %s: %s",
                request_id, settings.retry_max_attempts, type(e).__name__, e,
            )
            raise LLMServiceError(
                message="AI food analysis failed after multiple attempts. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={
                    "request_id": request_id,
                    "attempts": settings.retry_max_attempts,
                    "error_type": type(e).__name__,
                },
            ) from e

        self.circuit_breaker.record_success()
        return answer

    @retry(
        # The SDK raises generic exceptions for API errors
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _call_gemini_with_retry(self, image_path: str, mime_type: str, request_id: str) -> str:
        """One generation call with the photo inline. Retried as a whole by tenacity."""
        started = time.perf_counter()

        async with aiofiles.open(image_path, "rb") as f:
            image_bytes = await f.read()

        try:
            response = await self.model.generate_content_async(
                [self.NUTRITION_PROMPT, {"mime_type": mime_type, "data": image_bytes}],
                request_options={"timeout": GENERATION_TIMEOUT_SECONDS},
            )
        except Exception as e:
            logger.warning(
                "[%s] Gemini call failed after %.0fms: %s",
                request_id, (time.perf_counter() - started) * 1000, e,
            )
            raise

        answer = (response.text or "").strip()
        logger.info(
            "[%s] Gemini answered in %.0fms (%d chars, %d image bytes)",
            request_id, (time.perf_counter() - started) * 1000, len(answer), len(image_bytes),
        )
        logger.debug("[%s] Raw Gemini answer: %s", request_id, answer)
        return answer

    async def health_check(self) -> bool:
        """Model listing costs no tokens; it proves the key works and the API is reachable."""
        try:
            available = {m.name for m in genai.list_models()}
        except Exception as e:
            logger.warning("Gemini health check failed: %s", e)
            return False

        if f"models/{settings.gemini_model}" not in available:
            logger.warning("GEMINI_MODEL=%s is not offered to this API key", settings.gemini_model)
        return True


# Singleton: the circuit breaker state must be shared across requests
gemini_service = GeminiService()
