"""Aggregations over the in-memory store: chart buckets, history and summaries."""

from __future__ import annotations

import csv
import io
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from .formatting import format_clock, format_duration, to_hours
from .models import Activity, Course, ParentType, Project

if TYPE_CHECKING:
    from .store import ActivityStore


class Period(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(slots=True, frozen=True)
class SessionEntry:
    """A session flattened together with the activity it belongs to."""

    session_id: int
    activity_id: int
    activity_title: str
    parent_title: str
    parent_color: str
    duration: int
    occurred_at: datetime
    notes: str

    def as_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "activity_id": self.activity_id,
            "activity_title": self.activity_title,
            "parent_title": self.parent_title,
            "parent_color": self.parent_color,
            "duration": self.duration,
            "duration_display": format_clock(self.duration),
            "occurred_at": self.occurred_at.isoformat(),
            "notes": self.notes,
        }


@dataclass(slots=True)
class Bucket:
    label: str
    start: date
    end: date
    hours: dict[str, float] = field(default_factory=dict)

    @property
    def total_hours(self) -> float:
        return round(sum(self.hours.values()), 1)

    def as_dict(self) -> dict:
        return {
            "label": self.label,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "hours": dict(self.hours),
        }


@dataclass(slots=True, frozen=True)
class ParentSummary:
    parent_type: ParentType
    parent_id: int
    title: str
    color: str
    total_activities: int
    total_seconds: int

    @property
    def total_time(self) -> str:
        return format_duration(self.total_seconds)

    def as_dict(self) -> dict:
        return {
            "parent_type": self.parent_type.value,
            "parent_id": self.parent_id,
            "title": self.title,
            "color": self.color,
            "total_activities": self.total_activities,
            "total_seconds": self.total_seconds,
            "total_time": self.total_time,
        }


def flatten_sessions(activities: Iterable[Activity]) -> list[SessionEntry]:
    """All sessions across ``activities``, newest first."""
    entries = [
        SessionEntry(
            session_id=session.id,
            activity_id=activity.id,
            activity_title=activity.title,
            parent_title=activity.parent_title,
            parent_color=activity.parent_color,
            duration=session.duration,
            occurred_at=session.occurred_at,
            notes=session.notes,
        )
        for activity in activities
        for session in activity.sessions
    ]
    entries.sort(key=lambda entry: (entry.occurred_at, entry.session_id), reverse=True)
    return entries


def session_history(
    activities: Iterable[Activity],
    activity_id: Optional[int] = None,
    since: Optional[date] = None,
) -> list[SessionEntry]:
    """Session history filtered by activity and by first calendar day."""
    return [
        entry
        for entry in flatten_sessions(activities)
        if (activity_id is None or entry.activity_id == activity_id)
        and (since is None or entry.occurred_at.date() >= since)
    ]


def export_sessions_csv(entries: Sequence[SessionEntry]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["date", "start", "activity", "parent", "duration_seconds", "duration", "notes"])
    for entry in entries:
        writer.writerow(
            [
                entry.occurred_at.strftime("%Y-%m-%d"),
                entry.occurred_at.strftime("%H:%M"),
                entry.activity_title,
                entry.parent_title,
                entry.duration,
                format_clock(entry.duration),
                entry.notes,
            ]
        )
    return buffer.getvalue()


def bucketize(
    entries: Iterable[SessionEntry],
    period: Period | str,
    activity_id: Optional[int] = None,
    today: Optional[date] = None,
) -> list[Bucket]:
    """Group session hours per activity into the trailing chart windows.

    Day: the last 7 calendar days. Week: the last 5 Sunday-based weeks.
    Month: the last 6 calendar months. Sessions outside the window are
    ignored, and hours are rounded per bucket and activity.
    """
    period = Period(period)
    buckets = _bucket_windows(period, today or date.today())
    seconds: list[defaultdict[str, int]] = [defaultdict(int) for _ in buckets]

    for entry in entries:
        if activity_id is not None and entry.activity_id != activity_id:
            continue
        day = entry.occurred_at.date()
        for index, bucket in enumerate(buckets):
            if bucket.start <= day < bucket.end:
                seconds[index][entry.activity_title] += entry.duration
                break

    for bucket, totals in zip(buckets, seconds):
        bucket.hours = {title: to_hours(value) for title, value in totals.items()}
    return buckets


def _bucket_windows(period: Period, today: date) -> list[Bucket]:
    if period is Period.DAY:
        days = [today - timedelta(days=offset) for offset in range(6, -1, -1)]
        return [Bucket(day.strftime("%a"), day, day + timedelta(days=1)) for day in days]

    if period is Period.WEEK:
        # date.weekday() is Monday=0; shift so weeks start on Sunday.
        this_week = today - timedelta(days=(today.weekday() + 1) % 7)
        starts = [this_week - timedelta(weeks=offset) for offset in range(4, -1, -1)]
        return [
            Bucket(start.strftime("%b %d"), start, start + timedelta(weeks=1))
            for start in starts
        ]

    starts = [_shift_month(today.replace(day=1), -offset) for offset in range(5, -1, -1)]
    return [Bucket(start.strftime("%b"), start, _shift_month(start, 1)) for start in starts]


def _shift_month(first_of_month: date, months: int) -> date:
    index = first_of_month.year * 12 + first_of_month.month - 1 + months
    return date(index // 12, index % 12 + 1, 1)


def parent_summaries(
    courses: Iterable[Course],
    projects: Iterable[Project],
    activities: Sequence[Activity],
) -> list[ParentSummary]:
    """Activity count and tracked total per course and project."""
    summaries: list[ParentSummary] = []
    for kind, parents in ((ParentType.COURSE, courses), (ParentType.PROJECT, projects)):
        for parent in parents:
            owned = [a for a in activities if a.owned_by(kind, parent.id)]
            summaries.append(
                ParentSummary(
                    parent_type=kind,
                    parent_id=parent.id,
                    title=parent.title,
                    color=parent.color,
                    total_activities=len(owned),
                    total_seconds=sum(a.total_seconds for a in owned),
                )
            )
    return summaries


def current_streak(days: Iterable[date], today: Optional[date] = None) -> int:
    """Consecutive tracked days ending today, or yesterday if today is empty."""
    marked = set(days)
    cursor = today or date.today()
    if cursor not in marked:
        cursor -= timedelta(days=1)
    streak = 0
    while cursor in marked:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, store: "ActivityStore") -> None:
        self.store = store

    def print_summary(self, today: Optional[date] = None) -> None:
        activities = self.store.activities
        if not activities:
            print("No activities tracked yet.")
            return

        total = sum(activity.total_seconds for activity in activities)
        print(f"Tracked overall: {format_duration(total)}")
        print("-" * 40)
        for summary in parent_summaries(self.store.courses, self.store.projects, activities):
            label = f"{summary.parent_type.value}: {summary.title}"
            print(
                f"  {label[:30]:<30} {summary.total_activities:>3} activities"
                f"  {summary.total_time}"
            )

        print()
        print("Last 7 days:")
        self.print_chart(Period.DAY, today=today)

    def print_chart(self, period: Period, today: Optional[date] = None) -> None:
        buckets = bucketize(flatten_sessions(self.store.activities), period, today=today)
        for bucket in buckets:
            detail = ", ".join(
                f"{title} {hours}h" for title, hours in sorted(bucket.hours.items())
            )
            print(f"  {bucket.label:<8} {bucket.total_hours:>5}h  {detail}")
