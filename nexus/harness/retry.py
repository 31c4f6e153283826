"""
Retries with backoff for provider calls and agent executions.

ProviderClient wraps each Messages API request in ``with_retries`` so a 429 or
a dropped connection costs a pause instead of an agent. The scheduler reuses
the same loop for whole executor attempts under the "fail" policy, passing its
own ``is_retryable`` predicate.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional

import anthropic
import structlog

logger = structlog.get_logger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 529})
_TRANSIENT_TYPES = (
    anthropic.APIConnectionError,  # includes APITimeoutError
    anthropic.RateLimitError,
    anthropic.InternalServerError,
    ConnectionError,
    TimeoutError,
    OSError,
)


class RetryConfig:
    """Backoff parameters. ``max_retries`` counts retries, not attempts."""

    def __init__(
        self,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter_range: float = 0.5,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_range = jitter_range


def is_retryable_error(error: Exception) -> bool:
    """True for rate limits, overload/5xx responses and network failures."""
    if isinstance(error, _TRANSIENT_TYPES):
        return True
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code in _RETRYABLE_STATUS
    return False


def compute_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: Optional[float] = None,
) -> float:
    """Seconds to wait before retry number ``attempt + 1``.

    A server Retry-After wins, floored at one second. Otherwise the delay grows
    by ``exponential_base`` per attempt up to ``max_delay``, with symmetric
    jitter. ``base_delay <= 0`` means retry immediately.
    """
    if retry_after is not None:
        return max(1.0, retry_after)
    if config.base_delay <= 0:
        return 0.0

    backoff = min(config.max_delay, config.base_delay * config.exponential_base ** attempt)
    spread = backoff * config.jitter_range
    return max(0.1, backoff + random.uniform(-spread, spread))


def _retry_after_seconds(error: Exception) -> Optional[float]:
    if not isinstance(error, anthropic.APIStatusError):
        return None
    response = getattr(error, "response", None)
    raw = response.headers.get("retry-after") if response is not None else None
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


async def with_retries(
    func: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    is_retryable: Callable[[Exception], bool] = is_retryable_error,
) -> Any:
    """
    Await ``func()`` until it succeeds or the retry budget is spent.

    Errors rejected by ``is_retryable`` and the error from the final attempt
    are re-raised unchanged. ``on_retry(retry_number, error, delay)`` is called
    before each pause.
    """
    config = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if not is_retryable(e):
                logger.error("retry.gave_up", reason="not_retryable", error_type=type(e).__name__, error=str(e))
                raise
            if attempt >= config.max_retries:
                logger.error(
                    "retry.gave_up",
                    reason="exhausted",
                    error_type=type(e).__name__,
                    error=str(e),
                    attempts=attempt + 1,
                )
                raise

            delay = compute_delay(attempt, config, _retry_after_seconds(e))
            attempt += 1
            logger.warning(
                "retry.scheduled",
                error_type=type(e).__name__,
                error=str(e)[:200],
                retry=attempt,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 2),
            )
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)
