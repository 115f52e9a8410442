"""
NutriLens Backend: Rate Limiting Middleware
===========================================

What:  Per-client sliding window request limiter.
How:   Keeps the timestamps of each client's requests in the current window
       in memory; a client at the limit gets 429 with Retry-After.

Client key:
    - "key:<sha256 prefix>" when an X-API-Key header is present, so every
      integration using one key shares one budget regardless of source IP
    - "ip:<address>" otherwise

This limits request rate only. What a request costs is decided by the credit
ledger; a rate-limited request never reaches it and is never charged.

State is per process and is not shared between workers.
"""

import hashlib
import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from nutrilens.config import settings
from nutrilens.exceptions import RateLimitExceededError
from nutrilens.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

CLEANUP_EVERY = 1000


def client_key(request: Request) -> str:
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return "key:" + hashlib.sha256(api_key.encode()).hexdigest()[:16]
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    Defaults come from RATE_LIMIT_REQUESTS / RATE_LIMIT_WINDOW; tests pass
    explicit values.
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(
        self,
        app,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        super().__init__(app)
        self.max_requests = max_requests or settings.rate_limit_requests
        self.window_seconds = window_seconds or settings.rate_limit_window
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        key = client_key(request)
        now = time.time()
        window_start = now - self.window_seconds

        recent = [ts for ts in self._requests[key] if ts > window_start]
        self._requests[key] = recent

        if len(recent) >= self.max_requests:
            retry_after = int(recent[0] + self.window_seconds - now) + 1
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                key, len(recent), self.window_seconds,
            )
            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": exc.message,
                    "details": exc.context,
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        self._seen += 1
        if self._seen % CLEANUP_EVERY == 0:
            self._cleanup_inactive(window_start)

        return await call_next(request)

    def _cleanup_inactive(self, window_start: float) -> None:
        """Drop clients with no request inside the current window."""
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for key in inactive:
            del self._requests[key]
        if inactive:
            logger.debug("Cleaned up %d inactive rate limit entries", len(inactive))
