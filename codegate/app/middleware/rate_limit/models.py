"""Rate limiting data models.

This module contains dataclasses for rate limit state and results.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass
class RateDecision:
    """Result of a rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    reset_ms: int
    token: Optional[str] = None

    @property
    def retry_after(self) -> int:
        """Seconds until the oldest counted request leaves the window."""
        return math.ceil(self.reset_ms / 1000)


@dataclass(frozen=True)
class RateEntry:
    """One admitted request inside a client's sliding window.

    The token identifies the request so it can be withdrawn later without
    touching entries admitted concurrently for the same client.
    """
    timestamp_ms: float
    token: str
