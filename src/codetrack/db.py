"""SQLite persistence for courses, projects, activities and sessions.

Every query is scoped by the internal user id. A row that exists but belongs
to somebody else is reported exactly like a missing row so no data crosses
tenants.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from .errors import NotFoundError, PersistenceError
from .models import ActivityRecord, Course, ParentType, Project, Session

logger = logging.getLogger(__name__)


DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"
DATE_FMT = "%Y-%m-%d"

_UNSET = object()

_PARENT_TABLES: dict[ParentType, str] = {
    ParentType.COURSE: "courses",
    ParentType.PROJECT: "projects",
}


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    enable_foreign_keys(conn)
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY,
            external_id TEXT NOT NULL UNIQUE,
            email TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS courses (
            id INTEGER PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            color TEXT NOT NULL DEFAULT 'blue',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS projects (
            id INTEGER PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            color TEXT NOT NULL DEFAULT 'green',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS activities (
            id INTEGER PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            color TEXT,
            course_id INTEGER REFERENCES courses(id) ON DELETE CASCADE,
            project_id INTEGER REFERENCES projects(id) ON DELETE CASCADE,
            created_at TEXT NOT NULL,
            CHECK ((course_id IS NULL) != (project_id IS NULL))
        );

        CREATE TABLE IF NOT EXISTS sessions (
            id INTEGER PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            activity_id INTEGER NOT NULL REFERENCES activities(id) ON DELETE CASCADE,
            start_time TEXT NOT NULL,
            duration INTEGER NOT NULL CHECK (duration >= 0),
            notes TEXT NOT NULL DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS streaks (
            id INTEGER PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            day TEXT NOT NULL,
            UNIQUE (user_id, day)
        );

        CREATE INDEX IF NOT EXISTS idx_activities_user ON activities(user_id);
        CREATE INDEX IF NOT EXISTS idx_sessions_activity_start
            ON sessions(activity_id, start_time);
        """
    )


class SqliteRepository:
    """Per-user data access used by the activity store."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect():
            pass

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            with database_connection(self.db_path) as conn:
                yield conn
        except sqlite3.Error as exc:
            logger.exception("Database operation failed on %s", self.db_path)
            raise PersistenceError(str(exc)) from exc

    # Users

    def find_user(self, external_id: str) -> Optional[int]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id FROM users WHERE external_id = ?", (external_id,)
            ).fetchone()
        return row["id"] if row else None

    def create_user(
        self,
        external_id: str,
        email: str = "",
        *,
        courses: Iterable[tuple[str, str, str]] = (),
        projects: Iterable[tuple[str, str, str]] = (),
    ) -> int:
        """Insert a user with its starter ``(title, description, color)`` rows.

        All rows land in one transaction, so a user never exists half seeded.
        """
        created_at = _now()
        with self._connect() as conn, transaction(conn):
            cur = conn.execute(
                "INSERT INTO users (external_id, email, created_at) VALUES (?, ?, ?)",
                (external_id, email, created_at),
            )
            user_id = int(cur.lastrowid)
            for parent_type, rows in (
                (ParentType.COURSE, courses),
                (ParentType.PROJECT, projects),
            ):
                conn.executemany(
                    f"""
                    INSERT INTO {_PARENT_TABLES[parent_type]}
                        (user_id, title, description, color, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [(user_id, *row, created_at) for row in rows],
                )
        return user_id

    # Courses and projects

    def fetch_courses(self, user_id: int) -> list[Course]:
        return [
            Course(**row) for row in self._fetch_parents(user_id, ParentType.COURSE)
        ]

    def fetch_projects(self, user_id: int) -> list[Project]:
        return [
            Project(**row) for row in self._fetch_parents(user_id, ParentType.PROJECT)
        ]

    def create_course(
        self, user_id: int, title: str, description: str = "", color: str = "blue"
    ) -> Course:
        return Course(
            **self._insert_parent(user_id, ParentType.COURSE, title, description, color)
        )

    def create_project(
        self, user_id: int, title: str, description: str = "", color: str = "green"
    ) -> Project:
        return Project(
            **self._insert_parent(user_id, ParentType.PROJECT, title, description, color)
        )

    def update_course(
        self,
        user_id: int,
        course_id: int,
        *,
        title: object = _UNSET,
        description: object = _UNSET,
        color: object = _UNSET,
    ) -> Course:
        return Course(
            **self._update_parent(
                user_id, ParentType.COURSE, course_id, title, description, color
            )
        )

    def update_project(
        self,
        user_id: int,
        project_id: int,
        *,
        title: object = _UNSET,
        description: object = _UNSET,
        color: object = _UNSET,
    ) -> Project:
        return Project(
            **self._update_parent(
                user_id, ParentType.PROJECT, project_id, title, description, color
            )
        )

    def delete_course(self, user_id: int, course_id: int) -> None:
        self._delete_owned("courses", user_id, course_id)

    def delete_project(self, user_id: int, project_id: int) -> None:
        self._delete_owned("projects", user_id, project_id)

    def _fetch_parents(self, user_id: int, parent_type: ParentType) -> list[dict]:
        table = _PARENT_TABLES[parent_type]
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT id, title, description, color
                FROM {table}
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def _insert_parent(
        self,
        user_id: int,
        parent_type: ParentType,
        title: str,
        description: str,
        color: str,
    ) -> dict:
        table = _PARENT_TABLES[parent_type]
        with self._connect() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO {table} (user_id, title, description, color, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, title, description, color, _now()),
            )
            parent_id = int(cur.lastrowid)
        logger.info("Created %s %s for user %s", parent_type.value, parent_id, user_id)
        return {"id": parent_id, "title": title, "description": description, "color": color}

    def _update_parent(
        self,
        user_id: int,
        parent_type: ParentType,
        parent_id: int,
        title: object,
        description: object,
        color: object,
    ) -> dict:
        table = _PARENT_TABLES[parent_type]
        with self._connect() as conn:
            _apply_update(
                conn,
                table,
                user_id,
                parent_id,
                {"title": title, "description": description, "color": color},
            )
            row = conn.execute(
                f"SELECT id, title, description, color FROM {table} "
                "WHERE id = ? AND user_id = ?",
                (parent_id, user_id),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"{parent_type.value.title()} {parent_id} not found")
        return dict(row)

    def _delete_owned(self, table: str, user_id: int, row_id: int) -> None:
        with self._connect() as conn:
            cur = conn.execute(
                f"DELETE FROM {table} WHERE id = ? AND user_id = ?", (row_id, user_id)
            )
        if cur.rowcount == 0:
            raise NotFoundError(f"No row in {table} for id={row_id}")
        logger.info("Deleted %s id=%s for user %s", table, row_id, user_id)

    # Activities

    def fetch_activities(self, user_id: int) -> list[ActivityRecord]:
        with self._connect() as conn:
            activity_rows = conn.execute(
                """
                SELECT id, title, description, color, course_id, project_id
                FROM activities
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
            session_rows = conn.execute(
                """
                SELECT id, activity_id, start_time, duration, notes
                FROM sessions
                WHERE user_id = ?
                ORDER BY start_time DESC, id DESC
                """,
                (user_id,),
            ).fetchall()

        sessions_by_activity: dict[int, list[Session]] = {}
        for row in session_rows:
            sessions_by_activity.setdefault(row["activity_id"], []).append(
                _row_to_session(row)
            )
        return [
            ActivityRecord(
                id=row["id"],
                title=row["title"],
                description=row["description"],
                color=row["color"],
                course_id=row["course_id"],
                project_id=row["project_id"],
                sessions=tuple(sessions_by_activity.get(row["id"], ())),
            )
            for row in activity_rows
        ]

    def create_activity(
        self,
        user_id: int,
        title: str,
        parent_type: ParentType,
        parent_id: int,
        description: str = "",
        color: Optional[str] = None,
    ) -> ActivityRecord:
        table = _PARENT_TABLES[parent_type]
        course_id = parent_id if parent_type is ParentType.COURSE else None
        project_id = parent_id if parent_type is ParentType.PROJECT else None
        with self._connect() as conn:
            parent = conn.execute(
                f"SELECT id FROM {table} WHERE id = ? AND user_id = ?",
                (parent_id, user_id),
            ).fetchone()
            if parent is None:
                raise NotFoundError(
                    f"{parent_type.value.title()} {parent_id} not found or does not "
                    "belong to user"
                )
            cur = conn.execute(
                """
                INSERT INTO activities (
                    user_id, title, description, color, course_id, project_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, title, description, color, course_id, project_id, _now()),
            )
            activity_id = int(cur.lastrowid)
        logger.info("Created activity %s under %s %s", activity_id, parent_type.value, parent_id)
        return ActivityRecord(
            id=activity_id,
            title=title,
            description=description,
            color=color,
            course_id=course_id,
            project_id=project_id,
        )

    def update_activity(
        self,
        user_id: int,
        activity_id: int,
        *,
        title: object = _UNSET,
        description: object = _UNSET,
        color: object = _UNSET,
    ) -> ActivityRecord:
        with self._connect() as conn:
            _apply_update(
                conn,
                "activities",
                user_id,
                activity_id,
                {"title": title, "description": description, "color": color},
            )
            row = conn.execute(
                """
                SELECT id, title, description, color, course_id, project_id
                FROM activities
                WHERE id = ? AND user_id = ?
                """,
                (activity_id, user_id),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Activity {activity_id} not found")
        return ActivityRecord(**dict(row))

    def delete_activity(self, user_id: int, activity_id: int) -> None:
        self._delete_owned("activities", user_id, activity_id)

    # Sessions and streaks

    def create_session(
        self,
        user_id: int,
        activity_id: int,
        duration: int,
        notes: str = "",
        occurred_at: Optional[datetime] = None,
    ) -> Session:
        start_time = occurred_at or datetime.now()
        with self._connect() as conn:
            owner = conn.execute(
                "SELECT id FROM activities WHERE id = ? AND user_id = ?",
                (activity_id, user_id),
            ).fetchone()
            if owner is None:
                raise NotFoundError(
                    f"Activity {activity_id} not found or does not belong to user"
                )
            with transaction(conn):
                cur = conn.execute(
                    """
                    INSERT INTO sessions (user_id, activity_id, start_time, duration, notes)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        activity_id,
                        start_time.strftime(DATETIME_FMT),
                        duration,
                        notes,
                    ),
                )
                conn.execute(
                    "INSERT OR IGNORE INTO streaks (user_id, day) VALUES (?, ?)",
                    (user_id, start_time.strftime(DATE_FMT)),
                )
            session_id = int(cur.lastrowid)
        logger.debug(
            "Session %s created for activity %s, duration %ss",
            session_id,
            activity_id,
            duration,
        )
        return Session(
            id=session_id,
            activity_id=activity_id,
            duration=duration,
            occurred_at=start_time,
            notes=notes,
        )

    def delete_session(self, user_id: int, session_id: int) -> None:
        self._delete_owned("sessions", user_id, session_id)

    def fetch_streaks(self, user_id: int) -> list[date]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT day FROM streaks WHERE user_id = ? ORDER BY day DESC",
                (user_id,),
            ).fetchall()
        return [datetime.strptime(row["day"], DATE_FMT).date() for row in rows]


def _apply_update(
    conn: sqlite3.Connection,
    table: str,
    user_id: int,
    row_id: int,
    values: dict[str, object],
) -> None:
    fields: list[str] = []
    params: list[object] = []
    for column, value in values.items():
        if value is _UNSET:
            continue
        fields.append(f"{column} = ?")
        params.append(value)

    if not fields:
        return

    params.extend([row_id, user_id])
    cur = conn.execute(
        f"UPDATE {table} SET {', '.join(fields)} WHERE id = ? AND user_id = ?",
        params,
    )
    if cur.rowcount == 0:
        raise NotFoundError(f"No row in {table} for id={row_id}")


def _row_to_session(row: Union[sqlite3.Row, dict]) -> Session:
    return Session(
        id=row["id"],
        activity_id=row["activity_id"],
        duration=int(row["duration"]),
        occurred_at=datetime.strptime(row["start_time"], DATETIME_FMT),
        notes=row["notes"] or "",
    )


def _now() -> str:
    return datetime.now().strftime(DATETIME_FMT)
