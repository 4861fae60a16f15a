"""
Delay schedule for restarting speech capture after recognizer errors.

Defaults reproduce a fixed-delay retry that never gives up. Setting a
multiplier above 1.0 turns it into capped exponential backoff, and
``max_retries`` adds a circuit breaker.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class RestartPolicy:
    """Computes successive restart delays and tracks consecutive failures."""

    def __init__(self, config: dict = None):
        config = config or {}
        self._initial_delay = float(config.get("restart_delay_seconds", 2.0))
        self._multiplier = max(1.0, float(config.get("restart_backoff_multiplier", 1.0)))
        max_delay = config.get("restart_max_delay_seconds")
        self._max_delay = float(max_delay) if max_delay is not None else None
        max_retries = config.get("restart_max_retries")
        self._max_retries = int(max_retries) if max_retries is not None else None

        self._attempts = 0

    def next_delay(self) -> Optional[float]:
        """Delay before the next restart, or None once retries are exhausted."""
        if self._max_retries is not None and self._attempts >= self._max_retries:
            return None

        delay = self._initial_delay * (self._multiplier ** self._attempts)
        if self._max_delay is not None:
            delay = min(delay, self._max_delay)
        self._attempts += 1
        return delay

    def reset(self):
        """Forget past failures (capture produced a result again)."""
        if self._attempts:
            logger.debug("Restart policy reset after %d attempt(s)", self._attempts)
        self._attempts = 0

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def exhausted(self) -> bool:
        return self._max_retries is not None and self._attempts >= self._max_retries
