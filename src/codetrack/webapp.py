"""FastAPI application that exposes the CodeTrack dashboard API."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings
from .db import SqliteRepository
from .errors import (
    CodeTrackError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .formatting import format_duration
from .models import Activity, Course, ParentType, Project, Session
from .paths import get_db_path
from .provisioning import ensure_user
from .reporting import (
    Period,
    bucketize,
    current_streak,
    export_sessions_csv,
    flatten_sessions,
    parent_summaries,
    session_history,
)
from .store import ActivityStore, duration_from_parts
from .timer import StopwatchTimer, TickScheduler, TimerController

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Workspace:
    """Everything the dashboard keeps in memory for one signed-in user."""

    external_id: str
    store: ActivityStore
    timer: TimerController

    def release_orphaned_timer(self) -> None:
        """Drop the timer if a delete just removed the activity it was timing."""
        owner = self.timer.timer.activity_id
        if owner is None or any(a.id == owner for a in self.store.activities):
            return
        logger.info("Activity %s was deleted; discarding its timer", owner)
        self.timer.discard(confirmed=True)


class WorkspaceRegistry:
    """Lazily provision, load and hand out one workspace per user."""

    def __init__(
        self,
        repository: SqliteRepository,
        settings: Settings,
        scheduler: Optional[TickScheduler] = None,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._workspaces: dict[str, Workspace] = {}

    def get(self, external_id: str) -> Workspace:
        with self._lock:
            workspace = self._workspaces.get(external_id)
            if workspace is not None:
                return workspace
            user_id = ensure_user(self.repository, external_id)
            store = ActivityStore(self.repository, user_id, self.settings)
            store.load()
            timer = StopwatchTimer(self._scheduler, self.settings.tick_interval)
            workspace = Workspace(external_id, store, TimerController(timer))
            self._workspaces[external_id] = workspace
            logger.info("Workspace ready for user %s", external_id)
            return workspace

    def workspaces(self) -> list[Workspace]:
        with self._lock:
            return list(self._workspaces.values())

    def refresh_all(self) -> None:
        for workspace in self.workspaces():
            try:
                workspace.store.refresh()
            except PersistenceError:
                logger.warning("Refresh failed for user %s", workspace.external_id)

    def shutdown(self) -> None:
        for workspace in self.workspaces():
            workspace.timer.shutdown()


class RefreshRunner:
    """Re-synchronise every loaded workspace in a background thread."""

    def __init__(self, registry: WorkspaceRegistry, settings: Settings) -> None:
        self._registry = registry
        self._interval = settings.refresh_interval.total_seconds()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(stop_event,), daemon=True
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.info("Refresh thread started (every %ss).", self._interval)

    def stop(self) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread:
            thread.join(timeout=10)
            logger.info("Refresh thread stopped.")

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval):
            self._registry.refresh_all()


class ParentPayload(BaseModel):
    title: str
    description: str = ""
    color: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class EntityUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ActivityPayload(BaseModel):
    title: str
    parent_type: ParentType
    parent_id: int
    description: str = ""
    color: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class LogTimePayload(BaseModel):
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)
    notes: str = ""
    date: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")


class TimerStartPayload(BaseModel):
    activity_id: int

    model_config = ConfigDict(extra="forbid")


class TimerSavePayload(BaseModel):
    notes: str = ""

    model_config = ConfigDict(extra="forbid")


class TimerDiscardPayload(BaseModel):
    confirm: bool = False

    model_config = ConfigDict(extra="forbid")


def current_workspace(
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
) -> Workspace:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="You must be signed in")
    return request.app.state.registry.get(x_user_id.strip())


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[Settings] = None,
    scheduler: Optional[TickScheduler] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or Settings()
    repository = SqliteRepository(resolved_db_path)
    registry = WorkspaceRegistry(repository, resolved_settings, scheduler)
    runner = RefreshRunner(registry, resolved_settings)

    app = FastAPI(title="CodeTrack", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.registry = registry
    app.state.refresh_runner = runner

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        runner.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        runner.stop()
        registry.shutdown()

    @app.exception_handler(CodeTrackError)
    async def _domain_error(request: Request, exc: CodeTrackError) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "refresh_running": request.app.state.refresh_runner.is_running(),
            "database_path": str(request.app.state.db_path),
            "refresh_minutes": resolved_settings.refresh_interval.total_seconds() / 60.0,
            "tick_seconds": resolved_settings.tick_interval.total_seconds(),
            "active_users": len(request.app.state.registry.workspaces()),
        }

    # Courses and projects

    @app.get("/api/courses")
    def list_courses(workspace: Workspace = Depends(current_workspace)) -> Dict[str, Any]:
        store = workspace.store
        return {"courses": [_parent_payload(store, c, ParentType.COURSE) for c in store.courses]}

    @app.post("/api/courses", status_code=201)
    def create_course(
        payload: ParentPayload, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        course = workspace.store.create_course(payload.title, payload.description, payload.color)
        return _parent_payload(workspace.store, course, ParentType.COURSE)

    @app.patch("/api/courses/{course_id}")
    def update_course(
        course_id: int,
        payload: EntityUpdate,
        workspace: Workspace = Depends(current_workspace),
    ) -> Dict[str, Any]:
        course = workspace.store.update_course(course_id, **payload.model_dump(exclude_unset=True))
        return _parent_payload(workspace.store, course, ParentType.COURSE)

    @app.delete("/api/courses/{course_id}")
    def delete_course(
        course_id: int, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        workspace.store.delete_course(course_id)
        workspace.release_orphaned_timer()
        return {"success": True}

    @app.get("/api/projects")
    def list_projects(workspace: Workspace = Depends(current_workspace)) -> Dict[str, Any]:
        store = workspace.store
        return {
            "projects": [_parent_payload(store, p, ParentType.PROJECT) for p in store.projects]
        }

    @app.post("/api/projects", status_code=201)
    def create_project(
        payload: ParentPayload, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        project = workspace.store.create_project(
            payload.title, payload.description, payload.color
        )
        return _parent_payload(workspace.store, project, ParentType.PROJECT)

    @app.patch("/api/projects/{project_id}")
    def update_project(
        project_id: int,
        payload: EntityUpdate,
        workspace: Workspace = Depends(current_workspace),
    ) -> Dict[str, Any]:
        project = workspace.store.update_project(
            project_id, **payload.model_dump(exclude_unset=True)
        )
        return _parent_payload(workspace.store, project, ParentType.PROJECT)

    @app.delete("/api/projects/{project_id}")
    def delete_project(
        project_id: int, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        workspace.store.delete_project(project_id)
        workspace.release_orphaned_timer()
        return {"success": True}

    # Activities and sessions

    @app.get("/api/activities")
    def list_activities(
        parent_type: Optional[ParentType] = Query(default=None),
        parent_id: Optional[int] = Query(default=None),
        workspace: Workspace = Depends(current_workspace),
    ) -> Dict[str, Any]:
        activities = workspace.store.activities
        if parent_type is not None and parent_id is not None:
            activities = workspace.store.activities_for(parent_type, parent_id)
        return {"activities": [_activity_payload(a) for a in activities]}

    @app.post("/api/activities", status_code=201)
    def create_activity(
        payload: ActivityPayload, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        activity = workspace.store.create_activity(
            payload.title,
            payload.parent_type,
            payload.parent_id,
            description=payload.description,
            color=payload.color,
        )
        return _activity_payload(activity)

    @app.get("/api/activities/{activity_id}")
    def get_activity(
        activity_id: int, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        return _activity_payload(workspace.store.get_activity(activity_id))

    @app.patch("/api/activities/{activity_id}")
    def update_activity(
        activity_id: int,
        payload: EntityUpdate,
        workspace: Workspace = Depends(current_workspace),
    ) -> Dict[str, Any]:
        activity = workspace.store.update_activity(
            activity_id, **payload.model_dump(exclude_unset=True)
        )
        return _activity_payload(activity)

    @app.delete("/api/activities/{activity_id}")
    def delete_activity(
        activity_id: int, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        workspace.store.delete_activity(activity_id)
        workspace.release_orphaned_timer()
        return {"success": True}

    @app.post("/api/activities/{activity_id}/sessions", status_code=201)
    def log_time(
        activity_id: int,
        payload: LogTimePayload,
        workspace: Workspace = Depends(current_workspace),
    ) -> Dict[str, Any]:
        duration = duration_from_parts(payload.hours, payload.minutes)
        session = workspace.store.record_session(
            activity_id, duration, notes=payload.notes, occurred_at=payload.date
        )
        activity = workspace.store.get_activity(activity_id)
        return {"session": _session_payload(session), "activity": _activity_payload(activity)}

    @app.delete("/api/activities/{activity_id}/sessions/{session_index}")
    def delete_session(
        activity_id: int,
        session_index: int,
        workspace: Workspace = Depends(current_workspace),
    ) -> Dict[str, Any]:
        workspace.store.delete_session(activity_id, session_index)
        activity = workspace.store.get_activity(activity_id)
        return {"success": True, "activity": _activity_payload(activity)}

    @app.get("/api/sessions")
    def sessions(
        activity_id: Optional[int] = Query(default=None),
        since: Optional[str] = Query(
            default=None, description="First day in YYYY-MM-DD format (inclusive)."
        ),
        workspace: Workspace = Depends(current_workspace),
    ) -> Dict[str, Any]:
        entries = session_history(
            workspace.store.activities, activity_id=activity_id, since=_parse_date(since)
        )
        return {
            "sessions": [entry.as_dict() for entry in entries],
            "total_seconds": sum(entry.duration for entry in entries),
        }

    @app.get("/api/sessions/export")
    def export_sessions(
        activity_id: Optional[int] = Query(default=None),
        since: Optional[str] = Query(default=None),
        workspace: Workspace = Depends(current_workspace),
    ) -> Response:
        entries = session_history(
            workspace.store.activities, activity_id=activity_id, since=_parse_date(since)
        )
        return Response(
            content=export_sessions_csv(entries),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="sessions.csv"'},
        )

    # Timer

    @app.get("/api/timer")
    def timer_state(workspace: Workspace = Depends(current_workspace)) -> Dict[str, Any]:
        return workspace.timer.timer.snapshot().as_dict()

    @app.post("/api/timer/start")
    def timer_start(
        payload: TimerStartPayload, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        workspace.store.get_activity(payload.activity_id)
        return workspace.timer.start(payload.activity_id).as_dict()

    @app.post("/api/timer/pause")
    def timer_pause(workspace: Workspace = Depends(current_workspace)) -> Dict[str, Any]:
        _require_transition(workspace.timer.pause(), "pause", workspace)
        return workspace.timer.timer.snapshot().as_dict()

    @app.post("/api/timer/complete")
    def timer_complete(workspace: Workspace = Depends(current_workspace)) -> Dict[str, Any]:
        _require_transition(workspace.timer.complete(), "complete", workspace)
        return workspace.timer.timer.snapshot().as_dict()

    @app.post("/api/timer/save", status_code=201)
    def timer_save(
        payload: TimerSavePayload, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        session = workspace.timer.save(workspace.store, notes=payload.notes)
        activity = workspace.store.get_activity(session.activity_id)
        return {
            "session": _session_payload(session),
            "activity": _activity_payload(activity),
            "timer": workspace.timer.timer.snapshot().as_dict(),
        }

    @app.post("/api/timer/discard")
    def timer_discard(
        payload: TimerDiscardPayload, workspace: Workspace = Depends(current_workspace)
    ) -> Dict[str, Any]:
        workspace.timer.discard(confirmed=payload.confirm)
        return workspace.timer.timer.snapshot().as_dict()

    # Reporting

    @app.get("/api/chart")
    def chart(
        period: Period = Query(default=Period.DAY),
        activity_id: Optional[int] = Query(default=None),
        workspace: Workspace = Depends(current_workspace),
    ) -> Dict[str, Any]:
        buckets = bucketize(
            flatten_sessions(workspace.store.activities), period, activity_id=activity_id
        )
        titles = sorted({title for bucket in buckets for title in bucket.hours})
        return {
            "period": period.value,
            "buckets": [bucket.as_dict() for bucket in buckets],
            "activities": titles,
        }

    @app.get("/api/summary")
    def summary(workspace: Workspace = Depends(current_workspace)) -> Dict[str, Any]:
        store = workspace.store
        summaries = parent_summaries(store.courses, store.projects, store.activities)
        total = sum(activity.total_seconds for activity in store.activities)
        return {
            "total_seconds": total,
            "total_activities": len(store.activities),
            "parents": [item.as_dict() for item in summaries],
            "current_streak": current_streak(store.streaks()),
        }

    @app.get("/api/streaks")
    def streaks(workspace: Workspace = Depends(current_workspace)) -> Dict[str, Any]:
        days = workspace.store.streaks()
        return {
            "days": [day.isoformat() for day in days],
            "current_streak": current_streak(days),
        }

    @app.post("/api/refresh")
    def refresh(workspace: Workspace = Depends(current_workspace)) -> Dict[str, Any]:
        activities = workspace.store.load()
        return {
            "activities": len(activities),
            "courses": len(workspace.store.courses),
            "projects": len(workspace.store.projects),
        }

    return app


def _status_for(exc: CodeTrackError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, PersistenceError):
        return 503
    return 500


def _require_transition(happened: bool, action: str, workspace: Workspace) -> None:
    if not happened:
        phase = workspace.timer.timer.phase.value
        raise HTTPException(status_code=409, detail=f"Cannot {action} a {phase} timer")


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc


def _parent_payload(
    store: ActivityStore, parent: Course | Project, kind: ParentType
) -> Dict[str, Any]:
    owned = store.activities_for(kind, parent.id)
    total = sum(activity.total_seconds for activity in owned)
    return {
        "id": parent.id,
        "title": parent.title,
        "description": parent.description,
        "color": parent.color,
        "total_activities": len(owned),
        "total_seconds": total,
        "total_time": format_duration(total),
    }


def _session_payload(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "activity_id": session.activity_id,
        "duration": session.duration,
        "date": session.occurred_at.isoformat(),
        "notes": session.notes,
    }


def _activity_payload(activity: Activity) -> Dict[str, Any]:
    return {
        "id": activity.id,
        "title": activity.title,
        "description": activity.description,
        "color": activity.color,
        "parent_type": activity.parent_type.value,
        "parent_id": activity.parent_id,
        "parent_title": activity.parent_title,
        "parent_color": activity.parent_color,
        "total_seconds": activity.total_seconds,
        "total_time": activity.total_time,
        "sessions": [_session_payload(session) for session in activity.sessions],
    }
