"""
NutriLens Backend: Shared Response Schemas
==========================================

What:  Error envelope and health payload shared by every router.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standardized error body for all API errors.

    Example:
        {
            "error": "insufficient_credits",
            "message": "Insufficient API credits. You need 1 credits but have only 0 remaining.",
            "details": {"required": 1, "remaining": 0, "used": 100, "total": 100},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    gemini: str = Field(description="Gemini API status: available, unavailable, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")


class MessageResponse(BaseModel):
    message: str
