"""In-memory aggregate of one user's courses, projects and activities.

Every mutation is two-phase: validate locally, call the repository, and only
touch the in-memory records once the repository call has returned. A failed
call leaves the store exactly as it was.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime
from typing import Optional, Union, cast

from .config import Settings
from .db import SqliteRepository
from .errors import NotFoundError, PersistenceError, ValidationError
from .models import Activity, ActivityRecord, Course, ParentType, Project, Session

logger = logging.getLogger(__name__)

Parent = Union[Course, Project]


class ActivityStore:
    """Owns the records of a single signed-in user."""

    def __init__(
        self,
        repository: SqliteRepository,
        user_id: int,
        settings: Optional[Settings] = None,
    ) -> None:
        self.repository = repository
        self.user_id = user_id
        self.settings = settings or Settings()
        self.courses: list[Course] = []
        self.projects: list[Project] = []
        self.activities: list[Activity] = []
        self.revision = 0
        self.loaded_at: Optional[datetime] = None
        self._lock = threading.RLock()

    # Synchronisation

    def load(self) -> list[Activity]:
        """Replace local state with the repository's current view."""
        courses, projects, records = self._fetch_all()
        with self._lock:
            self._apply_snapshot(courses, projects, records)
            return list(self.activities)

    def refresh(self) -> bool:
        """Background re-sync; skipped if a local write landed meanwhile."""
        started_at = self.revision
        courses, projects, records = self._fetch_all()
        with self._lock:
            if self.revision != started_at:
                logger.debug(
                    "Discarding refresh for user %s: revision moved %s -> %s",
                    self.user_id,
                    started_at,
                    self.revision,
                )
                return False
            self._apply_snapshot(courses, projects, records)
        return True

    def _fetch_all(
        self,
    ) -> tuple[list[Course], list[Project], list[ActivityRecord]]:
        return (
            self.repository.fetch_courses(self.user_id),
            self.repository.fetch_projects(self.user_id),
            self.repository.fetch_activities(self.user_id),
        )

    def _apply_snapshot(
        self,
        courses: list[Course],
        projects: list[Project],
        records: list[ActivityRecord],
    ) -> None:
        parents: dict[tuple[ParentType, int], Parent] = {}
        parents.update({(ParentType.COURSE, c.id): c for c in courses})
        parents.update({(ParentType.PROJECT, p.id): p for p in projects})

        activities: list[Activity] = []
        for record in records:
            try:
                key = record.parent
            except ValueError:
                logger.warning("Skipping activity %s without a parent", record.id)
                continue
            parent = parents.get(key)
            if parent is None:
                logger.warning(
                    "Skipping activity %s: %s %s not found",
                    record.id,
                    key[0].value,
                    key[1],
                )
                continue
            activities.append(_activity_from_record(record, key[0], parent))

        self.courses = list(courses)
        self.projects = list(projects)
        self.activities = activities
        self.loaded_at = datetime.now()
        logger.debug(
            "Loaded %d courses, %d projects, %d activities for user %s",
            len(self.courses),
            len(self.projects),
            len(self.activities),
            self.user_id,
        )

    def _bump(self) -> None:
        self.revision += 1

    # Lookups

    def get_activity(self, activity_id: int) -> Activity:
        with self._lock:
            for activity in self.activities:
                if activity.id == activity_id:
                    return activity
        raise NotFoundError(f"Activity {activity_id} not found")

    def get_parent(self, parent_type: Union[ParentType, str], parent_id: int) -> Parent:
        kind = _parent_type(parent_type)
        candidates = self.courses if kind is ParentType.COURSE else self.projects
        for parent in candidates:
            if parent.id == parent_id:
                return parent
        raise NotFoundError(f"{kind.value.title()} {parent_id} not found")

    def activities_for(self, parent_type: Union[ParentType, str], parent_id: int) -> list[Activity]:
        kind = _parent_type(parent_type)
        return [a for a in self.activities if a.owned_by(kind, parent_id)]

    # Courses and projects

    def create_course(
        self, title: str, description: str = "", color: Optional[str] = None
    ) -> Course:
        return cast(Course, self._create_parent(ParentType.COURSE, title, description, color))

    def update_course(
        self,
        course_id: int,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Course:
        course = self._update_parent(
            ParentType.COURSE, course_id, title=title, description=description, color=color
        )
        return cast(Course, course)

    def delete_course(self, course_id: int) -> None:
        self._delete_parent(ParentType.COURSE, course_id)

    def create_project(
        self, title: str, description: str = "", color: Optional[str] = None
    ) -> Project:
        return cast(Project, self._create_parent(ParentType.PROJECT, title, description, color))

    def update_project(
        self,
        project_id: int,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Project:
        project = self._update_parent(
            ParentType.PROJECT, project_id, title=title, description=description, color=color
        )
        return cast(Project, project)

    def delete_project(self, project_id: int) -> None:
        self._delete_parent(ParentType.PROJECT, project_id)

    def _create_parent(
        self,
        kind: ParentType,
        title: str,
        description: str,
        color: Optional[str],
    ) -> Parent:
        clean_title = _required_title(title)
        default_color = (
            self.settings.default_course_color
            if kind is ParentType.COURSE
            else self.settings.default_project_color
        )
        create = getattr(self.repository, f"create_{kind.value}")
        parent = self._persist(
            f"create {kind.value}",
            create,
            self.user_id,
            clean_title,
            description or "",
            color or default_color,
        )
        with self._lock:
            _put_first(self._parents(kind), parent)
            self._bump()
        return parent

    def _update_parent(self, kind: ParentType, parent_id: int, **changes: Optional[str]) -> Parent:
        self.get_parent(kind, parent_id)
        updates = _collect_changes(changes)
        update = getattr(self.repository, f"update_{kind.value}")
        parent = self._persist(f"update {kind.value}", update, self.user_id, parent_id, **updates)
        with self._lock:
            parents = self._parents(kind)
            for index, existing in enumerate(parents):
                if existing.id == parent_id:
                    parents[index] = parent
            for activity in self.activities:
                if activity.owned_by(kind, parent_id):
                    activity.parent_title = parent.title
                    activity.parent_color = parent.color
            self._bump()
        return parent

    def _delete_parent(self, kind: ParentType, parent_id: int) -> None:
        self.get_parent(kind, parent_id)
        delete = getattr(self.repository, f"delete_{kind.value}")
        self._persist(f"delete {kind.value}", delete, self.user_id, parent_id)
        with self._lock:
            parents = self._parents(kind)
            parents[:] = [p for p in parents if p.id != parent_id]
            # The database cascades; mirror it locally.
            self.activities = [a for a in self.activities if not a.owned_by(kind, parent_id)]
            self._bump()

    def _parents(self, kind: ParentType) -> list:
        return self.courses if kind is ParentType.COURSE else self.projects

    # Activities

    def create_activity(
        self,
        title: str,
        parent_type: Union[ParentType, str],
        parent_id: int,
        description: str = "",
        color: Optional[str] = None,
    ) -> Activity:
        clean_title = _required_title(title)
        kind = _parent_type(parent_type)
        parent = self.get_parent(kind, parent_id)
        record = self._persist(
            "create activity",
            self.repository.create_activity,
            self.user_id,
            clean_title,
            kind,
            parent_id,
            description=description or "",
            color=color,
        )
        activity = _activity_from_record(record, kind, parent)
        with self._lock:
            _put_first(self.activities, activity)
            self._bump()
        return activity

    def update_activity(
        self,
        activity_id: int,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Activity:
        self.get_activity(activity_id)
        updates = _collect_changes({"title": title, "description": description, "color": color})
        record = self._persist(
            "update activity",
            self.repository.update_activity,
            self.user_id,
            activity_id,
            **updates,
        )
        with self._lock:
            activity = self.get_activity(activity_id)
            activity.title = record.title
            activity.description = record.description
            activity.color = record.color
            self._bump()
        return activity

    def delete_activity(self, activity_id: int) -> None:
        self.get_activity(activity_id)
        self._persist(
            "delete activity", self.repository.delete_activity, self.user_id, activity_id
        )
        with self._lock:
            self.activities = [a for a in self.activities if a.id != activity_id]
            self._bump()

    # Sessions

    def record_session(
        self,
        activity_id: int,
        duration_seconds: int,
        notes: str = "",
        occurred_at: Optional[datetime] = None,
    ) -> Session:
        """Persist a session and fold it into the owning activity."""
        duration = _positive_duration(duration_seconds)
        self.get_activity(activity_id)
        session = self._persist(
            "record session",
            self.repository.create_session,
            self.user_id,
            activity_id,
            duration,
            notes=notes or "",
            occurred_at=_local_naive(occurred_at),
        )
        with self._lock:
            # A refresh may have swapped the activity objects meanwhile.
            current = next((a for a in self.activities if a.id == activity_id), None)
            if current is None:
                logger.warning(
                    "Activity %s vanished before session %s could be applied",
                    activity_id,
                    session.id,
                )
            elif all(s.id != session.id for s in current.sessions):
                _insert_newest_first(current.sessions, session)
            self._bump()
        logger.info("Recorded %ss for activity %s", duration, activity_id)
        return session

    def delete_session(self, activity_id: int, session_index: int) -> Session:
        """Delete the session at ``session_index`` of the newest-first list."""
        activity = self.get_activity(activity_id)
        if not 0 <= session_index < len(activity.sessions):
            raise NotFoundError(
                f"Activity {activity_id} has no session at index {session_index}"
            )
        session = activity.sessions[session_index]
        self._persist(
            "delete session", self.repository.delete_session, self.user_id, session.id
        )
        with self._lock:
            current = next((a for a in self.activities if a.id == activity_id), None)
            if current is not None:
                current.sessions[:] = [s for s in current.sessions if s.id != session.id]
            self._bump()
        return session

    def streaks(self) -> list[date]:
        return self._persist("fetch streaks", self.repository.fetch_streaks, self.user_id)

    def _persist(self, action: str, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PersistenceError:
            logger.error("Could not %s for user %s; local state unchanged", action, self.user_id)
            raise


def duration_from_parts(hours: int = 0, minutes: int = 0) -> int:
    """Convert a manual ``hours`` + ``minutes`` entry into seconds."""
    if hours < 0 or minutes < 0:
        raise ValidationError("Hours and minutes must not be negative")
    total = int(hours) * 3600 + int(minutes) * 60
    if total == 0:
        raise ValidationError("Please enter a valid time")
    return total


def _activity_from_record(
    record: ActivityRecord, kind: ParentType, parent: Parent
) -> Activity:
    return Activity(
        id=record.id,
        title=record.title,
        parent_type=kind,
        parent_id=parent.id,
        description=record.description,
        color=record.color,
        parent_title=parent.title,
        parent_color=parent.color,
        sessions=list(record.sessions),
    )


def _put_first(items: list, item) -> None:
    # A refresh may already have loaded the new row; never hold it twice.
    for index, existing in enumerate(items):
        if existing.id == item.id:
            items[index] = item
            return
    items.insert(0, item)


def _insert_newest_first(sessions: list[Session], session: Session) -> None:
    for index, existing in enumerate(sessions):
        if existing.occurred_at <= session.occurred_at:
            sessions.insert(index, session)
            return
    sessions.append(session)


def _required_title(title: Optional[str]) -> str:
    clean = (title or "").strip()
    if not clean:
        raise ValidationError("Title is required")
    return clean


def _collect_changes(changes: dict[str, Optional[str]]) -> dict[str, str]:
    updates = {key: value for key, value in changes.items() if value is not None}
    if "title" in updates:
        updates["title"] = _required_title(updates["title"])
    return updates


def _parent_type(value: Union[ParentType, str]) -> ParentType:
    try:
        return ParentType(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown parent type: {value!r}") from exc


def _positive_duration(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Duration must be a whole number of seconds")
    if value <= 0:
        raise ValidationError("Duration must be greater than zero")
    return value


def _local_naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
