"""Reconnect delay policy."""

import random


class Backoff:
    """Geometric delay from ``minimum`` to ``maximum`` with multiplicative jitter.

    Schedule with the defaults: 1s → 2s → 4s → … → 60s (capped), each
    scaled by a random factor in ``[1 - jitter, 1 + jitter]`` and never
    above ``maximum``.
    """

    def __init__(
        self,
        minimum: float = 1.0,
        maximum: float = 60.0,
        factor: float = 2.0,
        jitter: float = 0.2,
        max_attempts: int = 8,
        rng: random.Random | None = None,
    ) -> None:
        self.minimum = minimum
        self.maximum = maximum
        self.factor = factor
        self.jitter = jitter
        self.max_attempts = max_attempts
        self._rng = rng or random.Random()

    def cap(self, attempt: int) -> int:
        """Clamp an attempt counter to ``1..max_attempts``."""
        return max(1, min(attempt, self.max_attempts))

    def base_delay(self, attempt: int) -> float:
        attempt = self.cap(attempt)
        return min(self.maximum, self.minimum * self.factor ** (attempt - 1))

    def delay(self, attempt: int, *, capped: bool = False) -> float:
        """Jittered delay before attempt ``attempt``; ``capped`` forces the maximum."""
        base = self.maximum if capped else self.base_delay(attempt)
        if self.jitter:
            base *= self._rng.uniform(1 - self.jitter, 1 + self.jitter)
        return max(0.0, min(base, self.maximum))
