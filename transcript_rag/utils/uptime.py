"""
Application uptime tracking.
"""

import time

_start_time: float | None = None


def set_start_time() -> None:
    """Mark the application as started."""
    global _start_time
    _start_time = time.monotonic()


def get_uptime() -> float:
    """Seconds since :func:`set_start_time`, 0 before startup."""
    if _start_time is None:
        return 0.0
    return time.monotonic() - _start_time
