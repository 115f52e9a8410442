"""
NutriLens Backend: FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers;
       uvicorn serves the module-level `app` (uvicorn nutrilens.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware: RateLimit → RequestID → AccessLog → GZip    │
    │                                                          │
    │  Routers:                                                │
    │    /api/users  /api/credits  /api/estimate-calories      │
    │    /api/food-analyses  /health                           │
    │                                                          │
    │  Exception Handlers (error → HTTP):                      │
    │    Validation/InvalidArgument/LimitExceeded → 400        │
    │    Authentication → 401   PermissionDenied → 403         │
    │    NotFound/AccountNotFound → 404                        │
    │    InsufficientCredits/RateLimit → 429                   │
    │    Database/PersistenceFailure/FileStorage → 500         │
    │    AIResponseFormat → 502   LLM/CircuitBreaker → 503     │
    └──────────────────────────────────────────────────────────┘

Every error body has the shape {error, message, details?, request_id}.
details are included for 4xx responses only; 5xx context stays in the log.
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from nutrilens import __version__
from nutrilens.config import settings
from nutrilens.database import dispose_engine
from nutrilens.exceptions import (
    AccountNotFoundError,
    AIResponseFormatError,
    AuthenticationError,
    CircuitBreakerOpenError,
    DatabaseError,
    FileStorageError,
    InsufficientCreditsError,
    InvalidArgumentError,
    LimitExceededError,
    LLMServiceError,
    NotFoundError,
    NutriLensError,
    PermissionDeniedError,
    PersistenceFailureError,
    RateLimitExceededError,
    ValidationError,
)
from nutrilens.middleware.logging import RequestLoggingMiddleware
from nutrilens.middleware.rate_limit import RateLimitMiddleware
from nutrilens.middleware.request_id import RequestIDMiddleware, request_id_var
from nutrilens.routes import credits, estimate, food_analyses, health, users

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once at startup.

    Format: 2024-01-15T12:00:00 [INFO] nutrilens.services.credit_ledger: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party loggers are chatty at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("tenacity").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("NutriLens Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: /health reports the degraded state
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())
    logger.info(
        "Credit policy: default=%d max=%d costs=%s",
        settings.credits_default_total,
        settings.credits_max_total,
        settings.endpoint_credit_costs,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("NutriLens Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content = {"error": error, "message": message}
    if details:
        content["details"] = details
    content["request_id"] = request_id_var.get("")
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the NutriLensError hierarchy to HTTP responses.

    Starlette resolves handlers along the exception's MRO, so a subclass
    handler (AccountNotFoundError) wins over its base (NotFoundError).
    """

    # ── 400 ───────────────────────────────────────────────────────────────
    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(InvalidArgumentError)
    async def handle_invalid_argument(request: Request, exc: InvalidArgumentError):
        logger.warning("[%s] Invalid argument: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "invalid_argument", exc.message, exc.context)

    @app.exception_handler(LimitExceededError)
    async def handle_limit_exceeded(request: Request, exc: LimitExceededError):
        logger.warning("[%s] Credit limit exceeded: %s", request_id_var.get(""), exc.context)
        return _error_response(400, "limit_exceeded", exc.message, exc.context)

    # ── 401 / 403 ─────────────────────────────────────────────────────────
    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        logger.info("[%s] Authentication failed: %s", request_id_var.get(""), exc.message)
        return _error_response(
            401, "not_authenticated", exc.message, headers={"WWW-Authenticate": "Bearer"}
        )

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        logger.warning("[%s] Permission denied on %s", request_id_var.get(""), request.url.path)
        return _error_response(403, "forbidden", exc.message)

    # ── 404 ───────────────────────────────────────────────────────────────
    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(AccountNotFoundError)
    async def handle_account_not_found(request: Request, exc: AccountNotFoundError):
        return _error_response(404, "account_not_found", exc.message)

    # ── 429 ───────────────────────────────────────────────────────────────
    @app.exception_handler(InsufficientCreditsError)
    async def handle_insufficient_credits(request: Request, exc: InsufficientCreditsError):
        return _error_response(429, "insufficient_credits", exc.message, exc.context)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    # ── 5xx ───────────────────────────────────────────────────────────────
    @app.exception_handler(AIResponseFormatError)
    async def handle_ai_format_error(request: Request, exc: AIResponseFormatError):
        logger.error("[%s] AI response format error: %s", request_id_var.get(""), exc.context)
        return _error_response(502, "ai_response_format_error", exc.message)

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503,
            "service_unavailable",
            exc.message,
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(LLMServiceError)
    async def handle_llm_error(request: Request, exc: LLMServiceError):
        logger.error("[%s] LLM service error: %s | %s", request_id_var.get(""), exc.message, exc.context)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _error_response(503, "llm_service_error", exc.message, headers=headers)

    @app.exception_handler(PersistenceFailureError)
    async def handle_persistence_failure(request: Request, exc: PersistenceFailureError):
        logger.error("[%s] Ledger persistence failure: %s", request_id_var.get(""), exc.context)
        return _error_response(500, "persistence_failure", exc.message)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(
            500, "server_error", "An internal error occurred. Please try again later."
        )

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("[%s] File storage error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(NutriLensError)
    async def handle_application_error(request: Request, exc: NutriLensError):
        logger.error("[%s] Unhandled application error %s: %s", request_id_var.get(""), type(exc).__name__, exc.message)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="NutriLens API",
        description=(
            "Food photo calorie and macronutrient estimation powered by Google Gemini, "
            "metered by a prepaid per-user credit ledger."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(users.router)
    app.include_router(credits.router)
    app.include_router(estimate.router)
    app.include_router(food_analyses.router)
    app.include_router(health.router)

    return app


app = create_app()
