from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_s: float = 2.0
    max_delay_s: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt after ``attempt`` (1-based)."""

        return min(self.base_delay_s * (2 ** (attempt - 1)), self.max_delay_s)


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    context: str,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """Run ``operation`` up to ``policy.max_retries`` times.

    Any exception counts as a failed attempt. ``on_retry`` is told about each
    failure that will be followed by another attempt, before the sleep.
    """

    attempts = max(1, policy.max_retries)
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as e:
            if attempt >= attempts:
                raise RetryExhaustedError(context, attempts, e) from e
            delay = policy.delay_for(attempt)
            logger.debug(
                "%s failed (attempt %d/%d): %s", context, attempt, attempts, e
            )
            if on_retry is not None:
                on_retry(attempt, delay, e)
            sleep(delay)
            attempt += 1
