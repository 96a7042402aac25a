"""Bounded retry with exponential backoff for faultline.

``retry`` wraps any fallible coroutine. Attempts are 1-indexed; the delay
before attempt ``n`` (n > 1) is ``base_delay * backoff_multiplier ** (n - 2)``
capped at ``max_delay``. There is no jitter.

Only failures whose ``ErrorKind`` is in ``RetryPolicy.retry_on`` are retried
(network and server failures by default); anything else is re-raised
immediately. ``retry_on=None`` retries every failure.
"""

import asyncio
import inspect
from functools import wraps
from typing import Any, Awaitable, Callable, FrozenSet, Optional, TypeVar

from pydantic import BaseModel, Field

from faultline.classification import TRANSIENT_KINDS, ErrorClassifier, ErrorKind, classify
from faultline.errors import LastAttemptError, RetryCancelled
from faultline.logging import get_logger
from faultline.metrics import MetricsCollector

logger = get_logger(__name__, component="retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


class RetryPolicy(BaseModel):
    """Configuration for retry behavior."""

    model_config = {"extra": "forbid", "frozen": True}

    max_attempts: int = Field(default=3, ge=1, description="Total attempts, including the first")
    base_delay: float = Field(default=1.0, ge=0.0, description="Delay before the second attempt, in seconds")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Exponential backoff base")
    max_delay: float = Field(default=30.0, ge=0.0, description="Upper bound for any single delay, in seconds")
    retry_on: Optional[FrozenSet[ErrorKind]] = Field(
        default=TRANSIENT_KINDS,
        description="Kinds that are retried; None retries every failure",
    )

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (1-indexed)."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * (self.backoff_multiplier ** (attempt - 2)), self.max_delay)

    def should_retry(self, kind: ErrorKind) -> bool:
        return self.retry_on is None or kind in self.retry_on


class CancellationToken:
    """Lets a caller abandon an in-flight retry loop deterministically.

    Example:
        >>> token = CancellationToken()
        >>> task = asyncio.create_task(retry(fetch, policy, cancel=token))
        >>> token.cancel("user navigated away")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def _backoff(delay: float, cancel: Optional[CancellationToken], sleep: Sleep, attempts: int) -> None:
    if cancel is None:
        await sleep(delay)
        return

    sleeper = asyncio.ensure_future(sleep(delay))
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, waiter):
            if not task.done():
                task.cancel()
        await asyncio.gather(sleeper, waiter, return_exceptions=True)

    if cancel.cancelled:
        raise RetryCancelled(attempts, cancel.reason)


async def retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    cancel: Optional[CancellationToken] = None,
    classifier: Optional[ErrorClassifier] = None,
    sleep: Sleep = asyncio.sleep,
    metrics: Optional[MetricsCollector] = None,
    name: Optional[str] = None,
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Args:
        operation: Zero-argument coroutine function.
        policy: Retry policy (defaults to ``RetryPolicy()``).
        cancel: Token that abandons the loop before the next attempt or
            during a backoff delay.
        classifier: Classifier deciding retryability (defaults to the
            module-level one).
        sleep: Awaitable delay function, injectable for tests.
        metrics: Collector receiving retry counters.
        name: Operation name for logs and metric labels.

    Returns:
        The result of the first successful attempt.

    Raises:
        LastAttemptError: All attempts failed; wraps the final attempt's error.
        RetryCancelled: The cancellation token fired.
        Exception: A non-retryable failure, re-raised unchanged.
    """
    policy = policy or RetryPolicy()
    op_name = name or getattr(operation, "__name__", "operation")
    kind_of = classifier.classify if classifier else classify

    for attempt in range(1, policy.max_attempts + 1):
        if cancel is not None and cancel.cancelled:
            raise RetryCancelled(attempt - 1, cancel.reason)

        try:
            result = await operation()
        except Exception as e:
            kind = kind_of(e)

            if not policy.should_retry(kind):
                logger.warning(
                    "retry_not_retryable",
                    operation=op_name,
                    attempt=attempt,
                    kind=kind.value,
                    error=str(e),
                )
                if metrics is not None:
                    metrics.increment("retry_fail_fast", labels={"operation": op_name, "kind": kind.value})
                raise

            if attempt == policy.max_attempts:
                logger.error(
                    "retry_exhausted",
                    operation=op_name,
                    attempts=attempt,
                    kind=kind.value,
                    error=str(e),
                )
                if metrics is not None:
                    metrics.increment("retry_exhausted", labels={"operation": op_name})
                raise LastAttemptError(attempt, e) from e

            delay = policy.delay_before(attempt + 1)
            logger.warning(
                "retry_attempt_failed",
                operation=op_name,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_s=delay,
                kind=kind.value,
                error=str(e),
            )
            if metrics is not None:
                metrics.increment("retry_attempts", labels={"operation": op_name})

            await _backoff(delay, cancel, sleep, attempt)
            continue

        if attempt > 1:
            logger.info("retry_succeeded", operation=op_name, attempt=attempt)
            if metrics is not None:
                metrics.increment("retry_success", labels={"operation": op_name})
        return result

    # max_attempts >= 1, so the loop always returns or raises
    raise RuntimeError("Retry loop exited without a result")


def with_retry(policy: Optional[RetryPolicy] = None, **retry_kwargs: Any):
    """Decorator form of ``retry`` for coroutine functions.

    Example:
        @with_retry(RetryPolicy(max_attempts=5))
        async def load_projects():
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError("with_retry only wraps coroutine functions")

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry(
                lambda: func(*args, **kwargs),
                policy,
                name=func.__name__,
                **retry_kwargs,
            )

        return wrapper

    return decorator
