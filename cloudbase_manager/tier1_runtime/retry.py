"""
cloudbase_manager.tier1_runtime.retry
──────────────────────────────────────
Fixed-count, fixed-delay retry for flaky follow-up calls (trigger creation
and function code update right after a function is created or updated).
Backed by Tenacity. Configuration and local validation errors are never
retried.

Usage:
    @fixed_retry()
    async def create_triggers():
        ...

    result = await call_with_retry(lambda: service.update_code(...))
"""
from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from cloudbase_manager.tier0_core.errors import ConfigurationError, ValidationError
from cloudbase_manager.tier0_core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 0.5


def _is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, (ConfigurationError, ValidationError))


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    log.warning(
        "retry.attempt_failed",
        attempt=state.attempt_number,
        error=type(exc).__name__ if exc else None,
        code=getattr(exc, "code", None),
    )


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int | None = None,
    delay: float | None = None,
) -> T:
    """
    Await ``fn()`` up to ``max_retries + 1`` times with a constant delay.
    The last error is re-raised unchanged.
    """
    retries = MAX_RETRIES if max_retries is None else max_retries
    wait = RETRY_DELAY_SECONDS if delay is None else delay

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_fixed(wait),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover


def fixed_retry(
    max_retries: int | None = None,
    delay: float | None = None,
) -> Callable:
    """Decorator form of call_with_retry."""
    def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await call_with_retry(
                lambda: fn(*args, **kwargs), max_retries=max_retries, delay=delay
            )
        return wrapper
    return decorator


__all__ = ["call_with_retry", "fixed_retry", "MAX_RETRIES", "RETRY_DELAY_SECONDS"]
