"""Bounded retry helper."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger("playback_mvp.retry")


# pylint: disable=too-many-arguments
def retry(
    fn: Callable[[int], T],
    *,
    max_attempts: int,
    delay: float = 1.0,
    backoff: float = 1.0,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn(attempt)`` until it succeeds or attempts run out.

    ``backoff=1.0`` gives a constant (linear) delay between attempts. Errors
    rejected by ``should_retry`` and the error of the last attempt propagate.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    current_delay = delay
    for attempt in range(1, max_attempts + 1):
        try:
            return fn(attempt)
        except Exception as exc:  # pylint: disable=broad-except
            if should_retry is not None and not should_retry(exc):
                raise
            if attempt == max_attempts:
                logger.error("All %s attempts failed: %s", max_attempts, exc)
                raise
            if on_retry is not None:
                on_retry(attempt, exc)
            logger.warning("Attempt %s/%s failed (%s), retrying in %.2fs", attempt, max_attempts, exc,
                           current_delay)
            sleep(current_delay)
            current_delay *= backoff

    raise AssertionError("unreachable")  # pragma: no cover
