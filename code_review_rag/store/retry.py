"""Retry with exponential back-off for vector-store calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import StoreFailure, ValidationFailure

LOG = logging.getLogger("code_review_rag.store.retry")

T = TypeVar("T")

# Errors that will not go away on a second attempt.
NON_RETRYABLE = (ValidationFailure, ValueError, TypeError)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay after a failed ``attempt`` (1-based): ``base × 2^(attempt-1)``."""
    return base_delay * (2 ** (attempt - 1))


async def with_retry(
    operation: str,
    call: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 1.0,
    timeout: Optional[float] = 30.0,
    logger: Optional[logging.Logger] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``call`` until it succeeds or ``attempts`` are used up.

    Each attempt runs under ``timeout`` seconds. Validation errors are
    raised immediately without retrying.

    Raises:
        StoreFailure: after the last attempt fails; ``kind`` is
            ``"timeout"`` when that attempt timed out
        ValidationFailure: passed through unchanged
    """
    log = logger or LOG
    attempts = max(1, attempts)
    last_error: Optional[BaseException] = None
    kind = "error"

    for attempt in range(1, attempts + 1):
        try:
            if timeout is None:
                return await call()
            return await asyncio.wait_for(call(), timeout=timeout)
        except ValidationFailure:
            raise
        except NON_RETRYABLE as exc:
            raise StoreFailure(
                f"{operation} rejected: {exc}", operation=operation, attempts=attempt
            ) from exc
        except asyncio.TimeoutError as exc:
            last_error, kind = exc, "timeout"
        except Exception as exc:
            last_error, kind = exc, "error"

        if attempt < attempts:
            delay = backoff_delay(attempt, base_delay)
            log.warning(
                "%s failed (attempt %d/%d, %s); retrying in %.1fs",
                operation, attempt, attempts, kind, delay,
            )
            await sleep(delay)

    message = f"{operation} timed out after {timeout}s" if kind == "timeout" else f"{operation} failed: {last_error}"
    log.error("%s gave up after %d attempts", operation, attempts)
    raise StoreFailure(message, operation=operation, attempts=attempts, kind=kind) from last_error
