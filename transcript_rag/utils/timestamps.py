"""Conversions between transcript clock strings and seconds."""

import re

_CLOCK = re.compile(r"^\s*(?:(\d+):)?(\d{1,2}):(\d{1,2}(?:\.\d+)?)\s*$")


def parse_timestamp(value: str | None) -> float | None:
    """
    Parse ``MM:SS`` or ``HH:MM:SS`` (fractional seconds allowed) into seconds.

    Returns None for empty or unparsable values; callers treat those as
    "no timestamp" rather than as an error.
    """
    if not value:
        return None
    match = _CLOCK.match(value)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours or 0) * 3600 + int(minutes) * 60 + float(seconds)


def format_timestamp(seconds: float) -> str:
    """Format seconds as ``MM:SS``, or ``HH:MM:SS`` from one hour on."""
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"
