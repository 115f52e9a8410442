"""
NutriLens Backend: Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for every recoverable error scenario.
How:   Each exception carries a user-facing message and an optional context
       dict. Global exception handlers (registered in main.py) map each type
       to an HTTP status and a structured JSON body.
Who:   Raised by services, dependencies and middleware; caught by handlers.

Exception Hierarchy:
    NutriLensError (base)
    ├── ValidationError              → 400 Bad Request
    │   └── InvalidArgumentError     → 400 (non-positive cost/amount/limit)
    ├── AuthenticationError          → 401 Unauthorized
    ├── PermissionDeniedError        → 403 Forbidden
    ├── NotFoundError                → 404 Not Found
    │   └── AccountNotFoundError     → 404
    ├── LedgerError (credit ledger outcomes)
    │   ├── InsufficientCreditsError → 429 Too Many Requests
    │   └── LimitExceededError       → 400 Bad Request
    ├── FileStorageError             → 500 Internal Server Error
    ├── DatabaseError                → 500 Internal Server Error
    │   └── PersistenceFailureError  → 500 (ledger write failed, rolled back)
    ├── AIResponseFormatError        → 502 Bad Gateway
    ├── LLMServiceError              → 503 Service Unavailable
    ├── CircuitBreakerOpenError      → 503 Service Unavailable
    └── RateLimitExceededError       → 429 Too Many Requests

Ledger callers can tell "not enough credits" (InsufficientCreditsError) apart
from "the write did not happen" (PersistenceFailureError) by type alone.
"""

from typing import Any, Dict, Optional


class NutriLensError(Exception):
    """
    Base exception for all NutriLens application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged; returned only for 4xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(NutriLensError):
    """
    Raised when client input fails a business-rule validation.

    When:    Unsupported image type, file too large, duplicate email, etc.
    HTTP:    400 Bad Request (FastAPI keeps 422 for schema validation)
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class InvalidArgumentError(ValidationError):
    """Raised by the ledger for a non-positive cost, amount or limit."""

    def __init__(self, argument: str, value: Any):
        super().__init__(
            message=f"'{argument}' must be a positive integer, got {value!r}",
            field=argument,
            context={"value": value},
        )


class AuthenticationError(NutriLensError):
    """
    Raised when the caller cannot be resolved to a user.

    When:    Missing credentials, bad/expired JWT, unknown API key, wrong
             password, rejected Google ID token.
    HTTP:    401 Unauthorized
    """

    def __init__(
        self,
        message: str = "Not authorized",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(NutriLensError):
    """Raised when an authenticated user lacks the admin flag. HTTP 403."""

    def __init__(
        self,
        message: str = "Not authorized as an admin",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(NutriLensError):
    """
    Raised when a requested resource does not exist.

    SQLAlchemy returns None for missing rows; the service layer converts that
    None into this exception so routes stay free of status-code logic.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class AccountNotFoundError(NotFoundError):
    """Raised by the ledger when the account id matches no user."""

    def __init__(self, account_id: Any):
        super().__init__(resource="account", resource_id=str(account_id))
        self.account_id = account_id


class LedgerError(NutriLensError):
    """Base for rejections decided by credit policy (not by storage failures)."""


class InsufficientCreditsError(LedgerError):
    """
    Raised when a consume request costs more than the remaining balance.

    State is left untouched and no transaction is written.
    HTTP:    429 Too Many Requests
    """

    def __init__(self, required: int, remaining: int, used: int, total: int):
        message = (
            f"Insufficient API credits. You need {required} credits "
            f"but have only {remaining} remaining."
        )
        super().__init__(
            message=message,
            context={"required": required, "remaining": remaining, "used": used, "total": total},
        )
        self.required = required
        self.remaining = remaining
        self.used = used
        self.total = total


class LimitExceededError(LedgerError):
    """
    Raised when a refill would push credits_total above the configured ceiling.

    HTTP:    400 Bad Request
    """

    def __init__(self, max_credits: int, current_total: int, requested: int):
        super().__init__(
            message=f"Cannot exceed maximum credit limit of {max_credits}",
            context={
                "max_credits": max_credits,
                "current_total": current_total,
                "requested": requested,
            },
        )
        self.max_credits = max_credits


class FileStorageError(NutriLensError):
    """
    Raised when file system operations fail (disk full, permission denied).

    HTTP:    500 Internal Server Error; paths stay in the server log.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(NutriLensError):
    """
    Raised when database operations fail unexpectedly.

    The client always gets a generic message. SQL, constraint names and other
    details are logged server-side only.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PersistenceFailureError(DatabaseError):
    """
    Raised when a ledger unit of work could not be committed.

    The balance update and the transaction append are rolled back together,
    so an account never shows a balance change without its audit record.
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["operation"] = operation
        super().__init__(
            message="Error processing API credits. No credits were changed.",
            context=ctx,
        )
        self.operation = operation


class AIResponseFormatError(NutriLensError):
    """
    Raised when Gemini answered but the text is not the expected JSON object.

    HTTP:    502 Bad Gateway
    """

    def __init__(
        self,
        message: str = "Could not process AI response (format error)",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class LLMServiceError(NutriLensError):
    """
    Raised when the Gemini call fails after all retries.

    HTTP:    503 Service Unavailable, with Retry-After when known
    """

    def __init__(
        self,
        message: str = "AI food analysis service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(NutriLensError):
    """
    Raised when the Gemini circuit breaker is OPEN.

    CLOSED → (threshold failures) → OPEN → (recovery timeout) → HALF_OPEN
    → success: CLOSED / failure: OPEN
    HTTP:    503 Service Unavailable
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"AI service is temporarily unavailable due to repeated failures. "
            f"The service will automatically retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class RateLimitExceededError(NutriLensError):
    """Raised when a client exceeds the request rate limit. HTTP 429."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
