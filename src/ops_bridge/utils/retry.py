"""Retry logic using tenacity.

Connectors use these helpers around the calls that open connections, so a
briefly unreachable MySQL server or API server does not fail a whole task.
"""

from collections.abc import Callable
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from ops_bridge.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    """Log each retry attempt before sleeping."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "retry_attempt",
        function=getattr(retry_state.fn, "__name__", "unknown"),
        attempt=retry_state.attempt_number,
        error=str(exc) if exc else None,
    )


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    retry_on_exceptions: tuple[type[BaseException], ...] = (OSError,),
    retry_if: Callable[[BaseException], bool] | None = None,
    **kwargs: Any,
) -> T:
    """Call a function, retrying transient failures with jittered backoff.

    Args:
        func: Callable to invoke
        *args: Positional arguments for func
        max_attempts: Maximum number of attempts (1 disables retrying)
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        retry_on_exceptions: Exception types considered transient
        retry_if: Optional predicate narrowing which exceptions are retried
        **kwargs: Keyword arguments for func

    Returns:
        The function's return value

    Raises:
        The last exception once attempts are exhausted
    """
    if retry_if is not None:
        condition = retry_if_exception(
            lambda exc: isinstance(exc, retry_on_exceptions) and retry_if(exc)
        )
    else:
        condition = retry_if_exception_type(retry_on_exceptions)

    retrying = Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=condition,
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(func, *args, **kwargs)
