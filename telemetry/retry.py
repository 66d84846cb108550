from __future__ import annotations

import random
import time
from typing import Callable, Iterable, Optional, Type, TypeVar

T = TypeVar("T")


def _compute_backoff(attempt: int, base_delay: float, factor: float, jitter: float) -> float:
    delay = base_delay * (factor ** attempt)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    attempts: int = 1,
    base_delay: float = 0.5,
    factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Iterable[Type[BaseException]] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Call ``fn`` up to ``attempts`` times, sleeping with exponential backoff between tries.

    ``attempts=1`` means a single call with no retry. The last failure is re-raised.
    """
    attempts = max(1, int(attempts))
    retryable = tuple(retry_exceptions)
    for attempt in range(attempts):
        try:
            return fn()
        except retryable as exc:
            if attempt >= attempts - 1:
                raise
            if on_retry is not None:
                on_retry(attempt + 1, exc)
            time.sleep(_compute_backoff(attempt, base_delay, factor, jitter))
    raise RuntimeError("unreachable")
