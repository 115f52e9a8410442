"""
NutriLens Backend: Request ID Middleware
========================================

What:  Tags every request with a correlation id and echoes it back.
How:   Reuses a client-supplied X-Request-ID or generates a short UUID,
       stores it in a ContextVar for log lines and error bodies, and sets
       the X-Request-ID response header.

The id appears in every error envelope ("request_id") so a client report
can be matched to the server log lines for the same call, including ledger
log lines for the credit it consumed.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Read by exception handlers and the access log
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns each request an id: the client's X-Request-ID if sane, else a new one."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        supplied = request.headers.get("X-Request-ID", "").strip()
        if supplied and len(supplied) <= MAX_CLIENT_ID_LENGTH and supplied.isprintable():
            rid = supplied
        else:
            rid = uuid.uuid4().hex[:8]

        request_id_var.set(rid)
        request.state.request_id = rid
        response = await call_next(request)

        response.headers["X-Request-ID"] = rid
        return response
