"""
Bounded retry with exponential backoff for external network calls.
Never wrap local computation (chunking, merging, validation) in this.
"""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from videodocs.core.constants import DEFAULT_MAX_ATTEMPTS, DEFAULT_INITIAL_DELAY_SEC

logger = logging.getLogger(__name__)

T = TypeVar("T")


def default_should_retry(exc: Exception) -> bool:
    """JobErrors carry their own verdict; anything else is assumed transient."""
    return getattr(exc, "retryable", True)


def retry(operation: Callable[[], T],
          max_attempts: int = DEFAULT_MAX_ATTEMPTS,
          initial_delay: float = DEFAULT_INITIAL_DELAY_SEC,
          should_retry: Callable[[Exception], bool] = default_should_retry,
          sleep: Callable[[float], None] = time.sleep,
          cancel_event: Optional[threading.Event] = None,
          description: str = "operation") -> T:
    """
    Call ``operation`` up to ``max_attempts`` times.
    Sleeps ``initial_delay`` after the first failure and doubles it after each
    further failure. The last exception is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    delay = initial_delay
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as e:
            if attempt >= max_attempts or not should_retry(e):
                raise
            if cancel_event is not None and cancel_event.is_set():
                raise
            logger.warning("%s failed (attempt %d/%d): %s; retrying in %.1fs",
                           description, attempt, max_attempts, e, delay)
            sleep(delay)
            delay *= 2
