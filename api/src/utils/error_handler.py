"""
Error types and retry utilities for calls to Google and other HTTP services.

Provides the integration error hierarchy, classification of transient vs
permanent failures, and an exponential backoff retry decorator used for
Google Sheets writes.
"""

import asyncio
import functools
import inspect
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, Union

import aiohttp
import structlog

logger = structlog.get_logger(__name__)


# ============================================================================
# Integration Errors
# ============================================================================


class IntegrationError(Exception):
    """Base class for failures talking to an external integration."""


class GoogleAPIError(IntegrationError):
    """Non-2xx response from a Google API."""

    def __init__(self, status: int, message: str, payload: Optional[dict] = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.payload = payload or {}

    def __repr__(self) -> str:
        return f"GoogleAPIError(status={self.status}, message={self.message!r})"


class GoogleConfigurationError(IntegrationError):
    """Google OAuth client credentials are missing."""


class TokenRefreshError(IntegrationError):
    """A stored refresh token could not be exchanged for a new access token."""


class SheetSyncError(IntegrationError):
    """The target sheet is in a state that retrying cannot fix."""


class EmailDeliveryError(IntegrationError):
    """The e-mail provider rejected a message."""


# ============================================================================
# Classification
# ============================================================================


class ErrorCategory(Enum):
    """Error category classification"""
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    ConnectionError,
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    aiohttp.ServerTimeoutError,
)

NON_RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    SheetSyncError,
    TokenRefreshError,
    GoogleConfigurationError,
    ValueError,
    TypeError,
    KeyError,
)


def classify_error(exception: BaseException) -> ErrorCategory:
    """
    Classify an exception as retryable or non-retryable.

    HTTP status codes win over the exception type: rate limiting, timeouts
    and 5xx responses are retried, every other 4xx is not.

    Args:
        exception: The exception to classify

    Returns:
        ErrorCategory indicating retry behavior
    """
    status_code = getattr(exception, "status", None)
    if isinstance(status_code, int):
        if status_code in RETRYABLE_STATUS_CODES:
            return ErrorCategory.RETRYABLE
        if 400 <= status_code < 500:
            return ErrorCategory.NON_RETRYABLE

    if isinstance(exception, NON_RETRYABLE_EXCEPTIONS):
        return ErrorCategory.NON_RETRYABLE

    if isinstance(exception, RETRYABLE_EXCEPTIONS):
        return ErrorCategory.RETRYABLE

    return ErrorCategory.NON_RETRYABLE


def is_retryable(exception: BaseException) -> bool:
    return classify_error(exception) is ErrorCategory.RETRYABLE


# ============================================================================
# Retry With Backoff
# ============================================================================


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_ratio: float = 0.1  # up to +10%


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay for retry attempt with exponential backoff and jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = min(config.initial_delay * (config.exponential_base ** attempt), config.max_delay)

    if config.jitter:
        delay += random.uniform(0, config.jitter_ratio) * delay

    return max(0.0, delay)


OnRetry = Callable[[int, BaseException, float], Union[None, Awaitable[None]]]
OnFailure = Callable[[int, BaseException], Union[None, Awaitable[None]]]


async def _call_hook(hook: Optional[Callable[..., Any]], *args: Any) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


def retry_with_backoff(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[OnRetry] = None,
    on_failure: Optional[OnFailure] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
):
    """
    Decorator for retrying coroutines with exponential backoff.

    Args:
        config: Retry configuration (uses defaults if None)
        on_retry: Called with (attempt, error, delay) before sleeping
        on_failure: Called with (attempt, error) for every failed attempt,
            including the last one and non-retryable failures
        sleep: Coroutine used to wait between attempts

    Returns:
        Decorated coroutine function with retry logic

    Example:
        @retry_with_backoff(RetryConfig(max_attempts=5))
        async def append_row(values):
            return await client.append_values(sheet_id, "A:Z", [values])
    """
    if config is None:
        config = RetryConfig()

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                try:
                    return await func(*args, **kwargs)

                except Exception as e:
                    error_category = classify_error(e)
                    await _call_hook(on_failure, attempt, e)

                    if error_category == ErrorCategory.NON_RETRYABLE:
                        logger.warning(
                            "non_retryable_error",
                            function=func.__name__,
                            attempt=attempt + 1,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                        raise

                    if attempt == config.max_attempts - 1:
                        logger.error(
                            "max_retries_exhausted",
                            function=func.__name__,
                            max_attempts=config.max_attempts,
                            error_type=type(e).__name__,
                            error=str(e),
                        )
                        raise

                    delay = calculate_delay(attempt, config)
                    logger.warning(
                        "retrying_operation",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_attempts=config.max_attempts,
                        delay_seconds=round(delay, 3),
                        error_type=type(e).__name__,
                        error_category=error_category.value,
                    )

                    await _call_hook(on_retry, attempt, e, delay)
                    await sleep(delay)

        return wrapper

    return decorator
