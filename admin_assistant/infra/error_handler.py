"""Error taxonomy, retry logic and upstream error classification."""

import asyncio
import random
import re
from typing import Optional, Type, Tuple, Callable, Any
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # API returned error response
    AUTH_ERROR = "auth_error"  # Authentication/authorization failures
    RATE_LIMIT = "rate_limit"  # Rate limit exceeded
    QUOTA = "quota"  # Upstream credits exhausted
    VALIDATION = "validation"  # Input validation errors
    BUSINESS_LOGIC = "business_logic"  # Business rule violations
    UNKNOWN = "unknown"  # Unknown errors


# ---------------------------------------------------------------------------
# Request-level errors (rendered as {"success": false, "error": ...})
# ---------------------------------------------------------------------------

class AssistantError(Exception):
    """Base for errors that end a request with a safe, user-visible message."""
    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.public_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class AuthenticationError(AssistantError):
    """Missing, malformed, expired or unknown bearer credential."""
    status_code = 401
    public_message = "Authentication required"


class AuthorizationError(AssistantError):
    """Authenticated caller lacks the administrator role."""
    status_code = 403
    public_message = "Permission denied"


class DuplicateRequestError(AssistantError):
    """Same request fingerprint seen inside the de-duplication window."""
    status_code = 409
    public_message = "Duplicate request, already being processed"


class ConfirmationError(AssistantError):
    """A confirmAction referenced an unusable pending action."""
    status_code = 409
    public_message = "Pending action cannot be confirmed"


class UpstreamModelError(AssistantError):
    """The model gateway failed before any tool ran."""
    status_code = 502
    public_message = "AI gateway error"


class ModelRateLimitedError(UpstreamModelError):
    status_code = 429
    public_message = "Rate limit exceeded, try again shortly"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class QuotaExhaustedError(UpstreamModelError):
    status_code = 402
    public_message = "AI credits exhausted"


class ModelUnavailableError(UpstreamModelError):
    status_code = 503
    public_message = "AI service temporarily unavailable"


# ---------------------------------------------------------------------------
# Per-invocation errors (become ToolResult{success: false})
# ---------------------------------------------------------------------------

class ToolValidationError(AssistantError):
    """Model-supplied arguments did not match the tool's schema."""
    status_code = 422
    public_message = "validation failed"


class ToolExecutionError(AssistantError):
    """A handler precondition or side effect failed; message is safe to show."""
    status_code = 500
    public_message = "tool execution failed"


class IntegrationNotConfigured(ToolExecutionError):
    """An outbound integration is missing credentials."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"{service} not configured")


# ---------------------------------------------------------------------------
# Retry classification (used around outbound calls)
# ---------------------------------------------------------------------------

class RetryableError(Exception):
    """Base exception for errors that carry a retry decision."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = True, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)


class NetworkError(RetryableError):
    """Network-related errors (connection, timeout)."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.NETWORK, retryable=True, retry_after=retry_after)


class APIError(RetryableError):
    """API returned an error response."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False, retry_after: Optional[float] = None):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.API_ERROR, retryable=retryable, retry_after=retry_after)


class AuthError(RetryableError):
    """Upstream rejected our credentials."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH_ERROR, retryable=False)


class RateLimitError(RetryableError):
    """Upstream rate limit exceeded. Not retried inside a request."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, retryable=False, retry_after=retry_after)


class QuotaError(RetryableError):
    """Upstream credits or quota exhausted."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.QUOTA, retryable=False)


def classify_error(error: Exception) -> Tuple[ErrorCategory, bool, Optional[float]]:
    """
    Classify an error into a category and determine if it's retryable.

    Args:
        error: The exception to classify

    Returns:
        Tuple of (category, retryable, retry_after_seconds)
    """
    if isinstance(error, RetryableError):
        return error.category, error.retryable, error.retry_after

    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return ErrorCategory.NETWORK, True, None

    error_str = str(error).lower()

    if any(keyword in error_str for keyword in ['connection', 'timeout', 'network', 'dns', 'refused']):
        return ErrorCategory.NETWORK, True, None

    if 'rate limit' in error_str or 'too many requests' in error_str:
        return ErrorCategory.RATE_LIMIT, False, None

    if any(keyword in error_str for keyword in ['unauthorized', 'forbidden', 'authentication']):
        return ErrorCategory.AUTH_ERROR, False, None

    return ErrorCategory.UNKNOWN, False, None


async def retry_with_backoff(
    func: Callable,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    """
    Retry a function with exponential backoff.

    Only errors that ``classify_error`` marks retryable are retried.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        retryable_exceptions: Tuple of exception types to consider
        on_retry: Optional callback called on each retry (exception, attempt_number)

    Returns:
        Result of the function call

    Raises:
        Last exception if all retries fail
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except retryable_exceptions as e:
            _, retryable, retry_after = classify_error(e)

            if not retryable or attempt >= max_retries:
                raise

            if retry_after:
                delay = min(retry_after, max_delay)
            else:
                delay = min(initial_delay * (exponential_base ** attempt), max_delay)

            # Add jitter to avoid thundering herd
            delay += random.uniform(0, delay * 0.1)

            if on_retry:
                result = on_retry(e, attempt + 1)
                if asyncio.iscoroutine(result):
                    await result

            await asyncio.sleep(delay)


def _retry_after_from(error: Exception) -> Optional[float]:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return None
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def wrap_llm_error(error: Exception, provider: str) -> RetryableError:
    """
    Wrap model gateway errors into our error types.

    Args:
        error: Original exception (usually from the openai SDK)
        provider: Provider label for messages and metrics

    Returns:
        RetryableError with appropriate category
    """
    if isinstance(error, RetryableError):
        return error

    error_str = str(error)
    error_lower = error_str.lower()
    status_code = getattr(error, "status_code", None)

    if status_code == 402 or "insufficient_quota" in error_lower:
        return QuotaError(f"{provider} quota exhausted")

    if status_code == 429 or re.search(r"rate.?limit", error_lower):
        return RateLimitError(f"{provider} rate limit exceeded", retry_after=_retry_after_from(error))

    if status_code in (401, 403):
        return AuthError(f"{provider} auth error ({status_code})")

    if status_code is not None:
        if status_code >= 500:
            # Server errors are retryable
            return APIError(f"{provider} server error ({status_code})", status_code=status_code, retryable=True)
        return APIError(f"{provider} API error ({status_code})", status_code=status_code, retryable=False)

    if isinstance(error, asyncio.TimeoutError) or any(
        keyword in error_lower for keyword in ['connection', 'timeout', 'timed out', 'network']
    ):
        return NetworkError(f"{provider} network error: {error_str}")

    return APIError(f"{provider} error: {error_str}", retryable=False)
