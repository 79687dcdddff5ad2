# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read-after-write waiting for eventually consistent directory writes.

After a create call the directory may not return the new entity for a
short while. wait_until_visible() sleeps the configured initial delay and
then polls a lookup with exponential backoff until it returns a value.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from w365lab.core.config.settings import PropagationSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PropagationPolicy:
    """Backoff schedule for read-after-write lookups.

    Attributes:
        initial_delay: Seconds to wait before the first lookup.
        backoff_factor: Multiplier applied after each miss.
        max_delay: Upper bound for a single wait.
        max_attempts: Number of lookups before giving up.
    """

    def __init__(
        self,
        initial_delay: float = 2.0,
        backoff_factor: float = 2.0,
        max_delay: float = 30.0,
        max_attempts: int = 5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.initial_delay = initial_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: PropagationSettings,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "PropagationPolicy":
        """Build a policy from PropagationSettings."""
        return cls(
            initial_delay=settings.initial_delay,
            backoff_factor=settings.backoff_factor,
            max_delay=settings.max_delay,
            max_attempts=settings.max_attempts,
            sleep=sleep,
        )

    def delays(self) -> list[float]:
        """Return the wait before each lookup attempt."""
        delays = []
        delay = self.initial_delay
        for _ in range(self.max_attempts):
            delays.append(min(delay, self.max_delay))
            delay *= self.backoff_factor
        return delays

    def wait_until_visible(
        self,
        lookup: Callable[[], T | None],
        description: str,
    ) -> T | None:
        """Poll lookup until it returns a value or attempts run out.

        Args:
            lookup: Callable returning the entity or None while not visible.
            description: What is being waited for, used in log messages.

        Returns:
            The looked-up value, or None if it never became visible.
        """
        for attempt, delay in enumerate(self.delays(), start=1):
            if delay > 0:
                self._sleep(delay)
            value = lookup()
            if value is not None:
                if attempt > 1:
                    logger.debug(
                        "%s visible after %d lookups", description, attempt
                    )
                return value
            logger.debug(
                "%s not yet visible (attempt %d/%d)",
                description,
                attempt,
                self.max_attempts,
            )
        return None
