"""Retry utilities for state and memory IO using tenacity.

Loop files live on a local or network filesystem shared with the host
agent and the operator; short-lived failures (a file being replaced, a
network mount hiccup) are retried before the caller degrades.

Examples:
    Retry a file write with exponential backoff::

        >>> @with_retry(max_attempts=3)
        ... def write_record(path: Path, text: str) -> None:
        ...     path.write_text(text, encoding="utf-8")

    Add extra retryable exceptions::

        >>> @with_retry(max_attempts=5, extra_exceptions=(ValueError,))
        ... def parse_record(path: Path) -> dict[str, object]:
        ...     ...
"""

from collections.abc import Callable

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)


def with_retry[T](
    max_attempts: int = 3,
    min_wait: float = 0.05,
    max_wait: float = 0.5,
    extra_exceptions: tuple[type[Exception], ...] = (),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying IO functions with exponential backoff.

    Retries on ``OSError`` (which covers ``FileNotFoundError``'s siblings
    such as ``PermissionError`` and ``BlockingIOError``) plus any
    additional exception types specified via extra_exceptions. The last
    exception is re-raised once attempts are exhausted.

    Args:
        max_attempts: Maximum number of attempts.
        min_wait: Minimum wait time between retries in seconds.
        max_wait: Maximum wait time between retries in seconds.
        extra_exceptions: Additional exception types to retry on.

    Returns:
        Decorator that wraps the function with retry logic.
    """
    retryable = (OSError, *extra_exceptions)
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retryable),
        reraise=True,
    )
