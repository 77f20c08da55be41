"""Utility functions for the gateway application."""

import random
import string
import time
from datetime import datetime, timezone

_SESSION_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """Generate a session identifier for requests without X-Session-ID.

    Examples:
        >>> generate_session_id()  # doctest: +SKIP
        'sess_1760000000000_k3j9x0a1b'
    """
    suffix = "".join(random.choices(_SESSION_ALPHABET, k=9))
    return f"sess_{int(time.time() * 1000)}_{suffix}"


def utc_timestamp() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - started) * 1000)
