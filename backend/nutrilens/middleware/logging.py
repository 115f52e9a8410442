"""
NutriLens Backend: Access Log Middleware
========================================

What:  One log line per HTTP request on the "nutrilens.access" logger.
How:   Measures wall time around the downstream call and logs method, path,
       status, duration, request id, client IP and the credential kind used.

Severity follows the status: 5xx → ERROR, 4xx → WARNING, else INFO.
Request bodies, images, tokens and API keys are never logged.

Example:
    2024-01-15T12:00:00 [INFO] nutrilens.access: POST /api/estimate-calories 200 3456.8ms [a1b2c3d4] from 10.0.0.7 auth=api_key
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from nutrilens.middleware.request_id import request_id_var

logger = logging.getLogger("nutrilens.access")

QUIET_PATHS = {"/health"}


def credential_kind(request: Request) -> str:
    """Which credential the caller presented: bearer, api_key or none."""
    if request.headers.get("Authorization", "").lower().startswith("bearer "):
        return "bearer"
    if request.headers.get("X-API-Key"):
        return "api_key"
    return "none"


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs status and duration of every request except health probes."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        began = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - began) * 1000, 1)

        fields = {
            "request_id": request_id_var.get(""),
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": elapsed_ms,
            "client_ip": request.client.host if request.client else "unknown",
            "auth": credential_kind(request),
        }
        logger.log(
            level_for_status(response.status_code),
            "%(method)s %(path)s %(status)d %(duration_ms).1fms [%(request_id)s] "
            "from %(client_ip)s auth=%(auth)s",
            fields,
            extra=fields,
        )
        return response
