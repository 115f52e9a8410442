"""
NutriLens Backend: Abstract Vision Model Interface
==================================================

What:  Contract for the AI service that looks at a food photo.
How:   Concrete implementations inherit from LLMService and implement
       analyze_image() and health_check().
Who:   Called by AnalysisService after the credit for the call was consumed.

Tests substitute a mock implementation; production uses GeminiService.
"""

from abc import ABC, abstractmethod


class LLMService(ABC):
    """
    Abstract interface for AI-powered food image analysis.

    Contract:
        - analyze_image() returns the model's raw text answer; parsing into a
          NutritionEstimate is done by nutrition_parser, not here
        - Implementations handle their own retries and error translation
        - Provider errors surface as LLMServiceError or CircuitBreakerOpenError
    """

    @abstractmethod
    async def analyze_image(self, image_path: str, mime_type: str) -> str:
        """
        Ask the vision model for a nutrition estimate of the pictured meal.

        Args:
            image_path: Absolute path to the stored image file.
            mime_type:  Declared image content type (e.g. "image/jpeg").

        Returns:
            The raw model text (expected to be a JSON object, possibly fenced).

        Raises:
            LLMServiceError: The AI service failed after all retries.
            CircuitBreakerOpenError: Too many recent consecutive failures.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the service is reachable. Must not consume generation quota."""
        ...
