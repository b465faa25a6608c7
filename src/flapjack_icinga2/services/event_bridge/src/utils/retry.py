"""Reconnect backoff with jitter."""

import logging
import random
from typing import Callable, Optional

from ..config.settings import RetryConfig

logger = logging.getLogger(__name__)


class Backoff:
    """
    Capped exponential backoff for reconnect attempts.

    The n-th consecutive failure waits ``initial * multiplier ** n`` seconds,
    capped at ``max_delay``, with +/-25% jitter when enabled. ``reset`` is
    called once a session has made progress so that the next failure starts
    from the initial delay again.
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        rand: Optional[Callable[[float, float], float]] = None
    ):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self._uniform = rand or random.uniform
        self.attempts = 0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "Backoff":
        return cls(
            initial_delay=config.initial_backoff_seconds,
            max_delay=config.max_backoff_seconds,
            backoff_factor=config.backoff_multiplier,
            jitter=config.jitter
        )

    def next_delay(self) -> float:
        """Delay before the next attempt; advances the attempt counter."""
        # Exponent capped to stay within float range
        exponent = min(self.attempts, 64)
        delay = min(self.initial_delay * (self.backoff_factor ** exponent), self.max_delay)
        self.attempts += 1

        if self.jitter:
            # Add jitter: ±25% of the delay
            jitter_range = delay * 0.25
            delay = delay + self._uniform(-jitter_range, jitter_range)

        return max(0.0, min(delay, self.max_delay))

    def reset(self):
        if self.attempts:
            logger.debug(f"Backoff reset after {self.attempts} attempts")
        self.attempts = 0
