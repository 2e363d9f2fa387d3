"""Bounded reconnection backoff.

The connection manager owns the only retry loop; transports never
reconnect on their own. This module holds the state machine that loop
consults between attempts.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from storefront_realtime.config.schema import ReconnectionConfig


@dataclass
class ReconnectPolicy:
    """Exponential backoff with jitter, a delay cap and an attempt ceiling.

    Attributes:
        base_delay: Delay before the first attempt, in seconds
        max_delay: Upper bound for any delay, in seconds
        max_attempts: Attempts allowed before the policy is exhausted
        jitter: Randomization factor; each delay varies by +/- delay * jitter
        attempts: Attempts consumed since the last reset
        last_delay: Most recent delay handed out, or None
    """

    base_delay: float = 3.0
    max_delay: float = 10.0
    max_attempts: int = 5
    jitter: float = 0.5
    rng: random.Random = field(default_factory=random.Random, repr=False)
    attempts: int = field(default=0, init=False)
    last_delay: float | None = field(default=None, init=False)

    @classmethod
    def from_config(cls, config: ReconnectionConfig) -> ReconnectPolicy:
        """Build a policy from client reconnection settings."""
        return cls(
            base_delay=config.delay_s,
            max_delay=config.delay_max_s,
            max_attempts=config.max_attempts,
            jitter=config.jitter,
        )

    @property
    def exhausted(self) -> bool:
        """True once every allowed attempt has been handed out."""
        return self.attempts >= self.max_attempts

    @property
    def remaining(self) -> int:
        """Attempts still available."""
        return max(0, self.max_attempts - self.attempts)

    def next_delay(self) -> float | None:
        """Consume one attempt and return its delay.

        Returns:
            Delay in seconds, or None if the attempt ceiling was reached
        """
        if self.exhausted:
            return None

        self.attempts += 1
        delay = min(self.base_delay * (2 ** (self.attempts - 1)), self.max_delay)

        if self.jitter:
            jitter_range = delay * self.jitter
            delay += self.rng.uniform(-jitter_range, jitter_range)

        self.last_delay = float(min(max(delay, 0.0), self.max_delay))
        return self.last_delay

    def reset(self) -> None:
        """Reset after a successful connection."""
        self.attempts = 0
        self.last_delay = None
