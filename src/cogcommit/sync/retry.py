"""
Retry logic with exponential backoff.

Used at two levels: every REST call made by the remote client is wrapped in
``with_async_retry`` (transport errors and retryable statuses), and the push
engine uses ``RetryConfig``/``calculate_delay`` to re-run commits that ended a
pass in ``error`` status.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_status_codes: set[int] = field(
        default_factory=lambda: {408, 429, 500, 502, 503, 504}
    )


class RetryableError(Exception):
    """Error that should trigger a retry."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NonRetryableError(Exception):
    """Error that should not be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def calculate_delay(
    attempt: int,
    config: RetryConfig,
) -> float:
    """
    Calculate delay before next retry using exponential backoff.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Up to 25% jitter
        delay += delay * 0.25 * random.random()

    return delay


def with_async_retry(
    config: Optional[RetryConfig] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator for adding retry logic to async functions.

    The decorated callable may also be a method whose instance exposes a
    ``retry_config`` attribute; that configuration wins over ``config``.

    Args:
        config: Retry configuration (uses defaults if not provided)

    Returns:
        Decorated async function with retry logic
    """
    default_config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            active = default_config
            if args and isinstance(getattr(args[0], "retry_config", None), RetryConfig):
                active = args[0].retry_config

            last_exception: Optional[Exception] = None

            for attempt in range(active.max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except RetryableError as e:
                    last_exception = e
                    reason = str(e)
                except NonRetryableError:
                    raise
                except httpx.RequestError as e:
                    last_exception = RetryableError(f"Network error: {e}")
                    reason = "network error"

                if attempt < active.max_retries:
                    delay = calculate_delay(attempt, active)
                    logger.warning(
                        f"Retry {attempt + 1}/{active.max_retries} for {func.__name__}: "
                        f"{reason}, waiting {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Max retries ({active.max_retries}) exceeded for {func.__name__}: "
                        f"{reason}"
                    )

            raise last_exception or RuntimeError("Unexpected retry loop exit")

        return wrapper

    return decorator


def check_response(response: httpx.Response, config: RetryConfig) -> None:
    """
    Check HTTP response and raise appropriate error.

    Args:
        response: HTTP response to check
        config: Retry configuration

    Raises:
        TransientRemoteError: If the error should be retried
        RemoteError: If the error should not be retried
    """
    from cogcommit.exceptions import RemoteError, TransientRemoteError

    if response.is_success:
        return

    status_code = response.status_code
    message = f"HTTP {status_code}: {_error_detail(response)}"

    if status_code in config.retryable_status_codes:
        raise TransientRemoteError(message, status_code=status_code)
    raise RemoteError(message, status_code=status_code)


def _error_detail(response: httpx.Response) -> str:
    """Pull a readable message out of a REST error body."""
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        for key in ("message", "error_description", "error", "msg"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value[:200]
    return response.text[:200]
