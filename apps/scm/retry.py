"""Bounded retry with exponential backoff for provider calls."""

import logging
import time
from typing import Callable, TypeVar

from apps.scm.exceptions import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    func: Callable[[], T],
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    description: str = "provider call",
    sleep: Callable[[float], None] | None = None,
) -> T:
    """
    Call ``func`` until it succeeds or ``max_attempts`` is reached.

    Only TransientProviderError is retried; the delay before attempt n+1 is
    ``backoff_factor ** n`` seconds. The last transient error is re-raised.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return func()
        except TransientProviderError as e:
            if attempt >= max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise
            delay = backoff_factor**attempt
            logger.warning(f"{description} failed (attempt {attempt}), retrying in {delay:g}s: {e}")
            (sleep or time.sleep)(delay)
