"""
NutriLens Backend: Health Check Route
=====================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database (SELECT 1) and Gemini (circuit state, then a
       list_models probe) and reports an aggregate status.

Status levels:
    - healthy:   all dependencies operational (HTTP 200)
    - degraded:  Gemini unavailable or circuit open (HTTP 200); credit and
                 history endpoints still work, estimates fail fast
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from nutrilens import __version__
from nutrilens.database import engine
from nutrilens.schemas.common import HealthResponse
from nutrilens.services.gemini_service import CircuitBreaker, gemini_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    gemini_status = "available"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    if gemini_service.circuit_breaker.state == CircuitBreaker.OPEN:
        gemini_status = "circuit_open"
    elif not await gemini_service.health_check():
        gemini_status = "unavailable"
    if gemini_status != "available" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        gemini=gemini_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
