"""
Retry/backoff helpers for outbound calls.

Only the uploader uses these. The extraction loop never retries a candidate
timestamp, and callers of BaseSnapshotUploader assume no retry contract, so
whatever retrying happens stays below that interface.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry policy.

    Attributes:
        max_attempts: Total attempts, the first one included
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay
        exponential_base: Growth factor between consecutive delays
        jitter: Spread each delay by up to 25% either way
        retryable_exceptions: Exception types worth another attempt
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Tuple[Type[BaseException], ...] = (Exception,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        # Accept any sequence of exception types
        object.__setattr__(self, "retryable_exceptions", tuple(self.retryable_exceptions))


RETRY_STANDARD = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=10.0)

# One quick retry when the request never got an HTTP answer. Error statuses
# are answers and are not retried.
RETRY_UPLOAD = RetryConfig(
    max_attempts=2,
    base_delay=0.5,
    max_delay=1.0,
    jitter=False,
    retryable_exceptions=(httpx.TransportError, ConnectionError, TimeoutError),
)

NO_RETRY = RetryConfig(max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=False)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Delay to wait after the zero-based `attempt` failed.

    base_delay * exponential_base ** attempt, capped at max_delay, then
    jittered by +/-25% when config.jitter is set. Never negative.
    """
    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)
    if config.jitter:
        spread = delay * 0.25
        delay += random.uniform(-spread, spread)
    return max(0.0, delay)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    config: RetryConfig = RETRY_STANDARD,
    operation_name: Optional[str] = None,
    **kwargs,
) -> T:
    """
    Await func(*args, **kwargs), retrying per config.

    Exceptions outside config.retryable_exceptions propagate at once. When
    every attempt fails the last exception is re-raised.

    Example:
        response = await retry_async(
            self._post_once, client, image_bytes, name, "image/jpeg", None,
            config=RETRY_UPLOAD,
            operation_name="snapshot_upload",
        )
    """
    op_name = operation_name or getattr(func, '__name__', 'operation')
    last_attempt = config.max_attempts - 1

    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt == last_attempt:
                logger.error(
                    f"{op_name} failed after {config.max_attempts} attempts: {e}",
                    extra={
                        "event_type": "retry_exhausted",
                        "operation": op_name,
                        "attempts": config.max_attempts,
                        "final_error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"{op_name} failed (attempt {attempt + 1}/{config.max_attempts}), "
                f"retrying in {delay:.1f}s: {e}",
                extra={
                    "event_type": "retry_attempt",
                    "operation": op_name,
                    "attempt": attempt + 1,
                    "max_attempts": config.max_attempts,
                    "delay_seconds": delay,
                    "error_type": type(e).__name__,
                }
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"{op_name} made no attempts")
