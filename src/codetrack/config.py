"""Configuration models and helpers for CodeTrack."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(slots=True)
class Settings:
    """Runtime configuration for the timer tick and the background refresh."""

    tick_interval: timedelta = timedelta(seconds=1)
    refresh_interval: timedelta = timedelta(minutes=5)
    default_course_color: str = "blue"
    default_project_color: str = "green"

    @classmethod
    def from_intervals(
        cls,
        refresh_minutes: float | None = None,
        tick_seconds: float | None = None,
    ) -> "Settings":
        refresh = refresh_minutes if refresh_minutes is not None else 5.0
        tick = tick_seconds if tick_seconds is not None else 1.0
        if refresh <= 0 or tick <= 0:
            raise ValueError("Intervals must be positive")
        return cls(
            tick_interval=timedelta(seconds=tick),
            refresh_interval=timedelta(minutes=refresh),
        )
