"""Helpers that turn durations in seconds into display strings."""

from __future__ import annotations

import re

_DURATION_PATTERN = re.compile(r"^\s*(\d+)h\s+(\d+)m\s*$")


def format_clock(seconds: int) -> str:
    """Render a stopwatch value as ``MM:SS`` or ``HH:MM:SS`` past one hour."""
    total_seconds = _checked(seconds)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_duration(seconds: int) -> str:
    """Render a tracked total as ``"{H}h {M}m"``; leftover seconds are dropped."""
    total_seconds = _checked(seconds)
    hours, remainder = divmod(total_seconds, 3600)
    return f"{hours}h {remainder // 60}m"


def parse_duration(value: str) -> tuple[int, int]:
    """Parse a ``format_duration`` string back into ``(hours, minutes)``."""
    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Not a duration string: {value!r}")
    return int(match.group(1)), int(match.group(2))


def to_hours(seconds: int) -> float:
    """Seconds to hours, rounded half-up to one decimal place."""
    total_seconds = _checked(seconds)
    # Integer arithmetic keeps .x5 boundaries exact.
    return ((total_seconds * 10 + 1800) // 3600) / 10


def _checked(seconds: int) -> int:
    value = int(seconds)
    if value < 0:
        raise ValueError(f"Duration must be non-negative, got {seconds}")
    return value
