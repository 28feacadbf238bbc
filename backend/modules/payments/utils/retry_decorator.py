# backend/modules/payments/utils/retry_decorator.py

"""
Backoff for gateway calls that run without a user waiting on them.

Reconciliation uses this to push an orphaned refund through a flaky
provider. Interactive paths (cancel, checkout) surface the first failure
to the caller instead.
"""

import asyncio
import logging
import random
from functools import wraps
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

from ..exceptions import GatewayFailureError


logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[Exception], ...] = (
    GatewayFailureError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    httpx.TransportError,
)


class RetryConfig:
    """How many times to try a gateway call and how long to wait in between"""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or TRANSIENT_ERRORS

    def calculate_delay(self, attempt: int) -> float:
        """Seconds to sleep after the given (1-based) failed attempt"""
        return backoff_delay(
            attempt,
            self.initial_delay,
            self.exponential_base,
            self.max_delay,
            self.jitter,
        )


def backoff_delay(
    attempt: int,
    initial: float,
    base: float,
    ceiling: float,
    jitter: bool,
) -> float:
    delay = min(initial * base ** (attempt - 1), ceiling)
    if jitter and delay > 0:
        # Spread concurrent sweeps by up to a quarter of the delay
        delay += random.uniform(-delay / 4, delay / 4)
    return max(delay, 0.0)


def is_retryable_error(error: Exception, config: RetryConfig) -> bool:
    # A gateway that answered with a definite rejection will answer the same again
    if isinstance(error, GatewayFailureError):
        return error.retryable
    return isinstance(error, config.retryable_exceptions)


def _describe(error: Exception) -> str:
    if isinstance(error, GatewayFailureError):
        return f"{error.gateway}.{error.operation}: {error.reason}"
    return f"{type(error).__name__}: {error}"


def retry_async(config: Optional[RetryConfig] = None):
    """
    Retry an async gateway call with exponential backoff.

    Non-retryable errors propagate on the first attempt. Once the attempts
    run out the last error propagates unchanged so callers can record it.

    Usage:
        refund = retry_async(RetryConfig(max_attempts=5))(
            orchestrator.refund_orphaned_payment
        )
        await refund(payment_id)
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = getattr(func, "__qualname__", repr(func))

        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable_error(e, config):
                        raise
                    if attempt >= config.max_attempts:
                        logger.error(
                            f"Giving up on {name} after {attempt} attempts: "
                            f"{_describe(e)}"
                        )
                        raise

                    delay = config.calculate_delay(attempt)
                    logger.warning(
                        f"{name} failed (attempt {attempt}/{config.max_attempts}), "
                        f"retrying in {delay:.2f}s: {_describe(e)}"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
