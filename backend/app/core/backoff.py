"""
Retry configuration and exponential backoff with jitter
"""

import math
import random
from dataclasses import dataclass
from typing import Optional

from .errors import ErrorClass

# Rate limited calls wait for the provider's per-minute window to roll over
RATE_LIMIT_MIN_DELAY_MS = 60_000
JITTER_RATIO = 0.25


@dataclass(frozen=True)
class RetryConfig:
    """Immutable retry policy for one call site"""

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_ms <= 0:
            raise ValueError("initial_delay_ms must be > 0")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        if self.backoff_multiplier <= 1:
            raise ValueError("backoff_multiplier must be > 1")

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_retry_delay(
    attempt: int,
    config: RetryConfig,
    error_class: ErrorClass,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Calculate the delay before the next attempt

    Args:
        attempt: Zero-based index of the attempt that just failed
        config: Retry policy
        error_class: Class of the failure
        rng: Random source; pass a seeded instance for deterministic results

    Returns:
        Delay in milliseconds
    """
    rng = rng or random
    base_delay = min(
        config.initial_delay_ms * (config.backoff_multiplier ** attempt),
        config.max_delay_ms,
    )

    # Uniform jitter in [-25%, +25%] of the base delay
    jitter = base_delay * JITTER_RATIO * (rng.random() - 0.5) * 2
    delay = int(math.floor(base_delay + jitter))

    if error_class == ErrorClass.RATE_LIMIT:
        delay = max(delay, RATE_LIMIT_MIN_DELAY_MS)

    return delay
