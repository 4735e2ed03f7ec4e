"""Retry policy shared by network-calling operations."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

from .errors import TransientNetworkError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def fixed_delay(delay: float) -> Callable[[int], float]:
    """Return a backoff function that waits ``delay`` seconds after every attempt."""

    def _backoff(_attempt: int) -> float:
        return delay

    return _backoff


@dataclass
class RetryPolicy:
    """Retry ``retry_on`` exceptions up to ``attempts`` times.

    ``backoff`` maps the 1-based attempt number that just failed to the delay
    before the next attempt. ``sleep`` is injectable so tests never block.
    """

    attempts: int = 5
    delay: float = 2.0
    backoff: Optional[Callable[[int], float]] = None
    retry_on: Tuple[Type[BaseException], ...] = (TransientNetworkError,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("RetryPolicy.attempts must be at least 1")
        if self.backoff is None:
            self.backoff = fixed_delay(self.delay)

    def call(self, func: Callable[..., T], *args, description: str = "", **kwargs) -> T:
        label = description or getattr(func, "__name__", "operation")
        for attempt in range(1, self.attempts + 1):
            try:
                return func(*args, **kwargs)
            except self.retry_on as exc:
                if attempt >= self.attempts:
                    LOGGER.error("%s failed after %d attempts: %s", label, attempt, exc)
                    raise
                wait = self.backoff(attempt)  # type: ignore[misc]
                LOGGER.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    label,
                    attempt,
                    self.attempts,
                    exc,
                    wait,
                )
                self.sleep(wait)
        raise AssertionError("unreachable")  # pragma: no cover


NO_RETRY = RetryPolicy(attempts=1, delay=0.0)

__all__ = ["NO_RETRY", "RetryPolicy", "fixed_delay"]
