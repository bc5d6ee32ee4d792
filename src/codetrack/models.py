"""Domain models for courses, projects, activities and tracked sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .formatting import format_duration


class ParentType(str, Enum):
    """The two containers an activity can belong to."""

    COURSE = "course"
    PROJECT = "project"


@dataclass(slots=True)
class Course:
    id: int
    title: str
    description: str = ""
    color: str = "blue"


@dataclass(slots=True)
class Project:
    id: int
    title: str
    description: str = ""
    color: str = "green"


@dataclass(slots=True)
class Session:
    """One completed or manually logged interval applied to an activity."""

    id: int
    activity_id: int
    duration: int
    occurred_at: datetime
    notes: str = ""


@dataclass(slots=True)
class Activity:
    """A trackable unit of work owned by exactly one course or project.

    ``sessions`` is kept newest first. The total is always derived from it so
    it can never drift from the recorded sessions.
    """

    id: int
    title: str
    parent_type: ParentType
    parent_id: int
    description: str = ""
    color: Optional[str] = None
    parent_title: str = ""
    parent_color: str = ""
    sessions: list[Session] = field(default_factory=list)

    @property
    def total_seconds(self) -> int:
        return sum(session.duration for session in self.sessions)

    @property
    def total_time(self) -> str:
        return format_duration(self.total_seconds)

    def owned_by(self, parent_type: ParentType, parent_id: int) -> bool:
        return self.parent_type == parent_type and self.parent_id == parent_id


@dataclass(slots=True, frozen=True)
class ActivityRecord:
    """Row shape returned by the repository before parent resolution."""

    id: int
    title: str
    description: str
    color: Optional[str]
    course_id: Optional[int]
    project_id: Optional[int]
    sessions: tuple[Session, ...] = ()

    @property
    def parent(self) -> tuple[ParentType, int]:
        if self.course_id is not None:
            return ParentType.COURSE, self.course_id
        if self.project_id is not None:
            return ParentType.PROJECT, self.project_id
        raise ValueError(f"Activity {self.id} has no parent reference")
