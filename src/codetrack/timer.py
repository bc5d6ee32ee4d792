"""Stopwatch state shared by every surface that can start or stop tracking.

The timer counts whole seconds through a repeating tick instead of reading the
wall clock, so the value a user sees is exactly the value that gets saved.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from .errors import (
    ConfirmationRequiredError,
    ConflictError,
    TimerBusyError,
    ValidationError,
)
from .formatting import format_clock
from .models import Session

if TYPE_CHECKING:
    from .store import ActivityStore

logger = logging.getLogger(__name__)


class TimerPhase(str, Enum):
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class TickHandle(Protocol):
    def cancel(self) -> None: ...


class TickScheduler(Protocol):
    def schedule(self, callback: Callable[[], None], interval: timedelta) -> TickHandle: ...


class _ThreadTick:
    """A daemon thread calling ``callback`` once per interval until cancelled."""

    def __init__(self, callback: Callable[[], None], interval: timedelta) -> None:
        self._callback = callback
        self._interval = interval.total_seconds()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop_event.set()

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._callback()
            except Exception:  # pragma: no cover
                logger.exception("Timer tick failed")


class ThreadScheduler:
    """Default scheduler backed by one thread per running interval."""

    def schedule(self, callback: Callable[[], None], interval: timedelta) -> TickHandle:
        return _ThreadTick(callback, interval)


@dataclass(slots=True, frozen=True)
class TimerSnapshot:
    phase: TimerPhase
    seconds: int
    activity_id: Optional[int]

    @property
    def is_running(self) -> bool:
        return self.phase is TimerPhase.RUNNING

    @property
    def display(self) -> str:
        return format_clock(self.seconds)

    def as_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "is_running": self.is_running,
            "seconds": self.seconds,
            "display": self.display,
            "activity_id": self.activity_id,
        }


class StopwatchTimer:
    """READY -> RUNNING <-> PAUSED -> COMPLETED, with ``reset`` back to READY.

    Transitions return ``False`` instead of raising when they are not valid
    from the current phase.
    """

    def __init__(
        self,
        scheduler: Optional[TickScheduler] = None,
        interval: timedelta = timedelta(seconds=1),
    ) -> None:
        self._scheduler = scheduler or ThreadScheduler()
        self._interval = interval
        self._lock = threading.RLock()
        self._phase = TimerPhase.READY
        self._seconds = 0
        self._handle: Optional[TickHandle] = None
        self._generation = 0
        self.activity_id: Optional[int] = None

    @property
    def phase(self) -> TimerPhase:
        return self._phase

    @property
    def seconds(self) -> int:
        return self._seconds

    @property
    def is_running(self) -> bool:
        return self._phase is TimerPhase.RUNNING

    def start(self) -> bool:
        with self._lock:
            if self._phase not in (TimerPhase.READY, TimerPhase.PAUSED):
                return False
            self._phase = TimerPhase.RUNNING
            self._generation += 1
            generation = self._generation
            self._handle = self._scheduler.schedule(
                lambda: self._tick(generation), self._interval
            )
        logger.debug("Timer started for activity %s at %ss", self.activity_id, self._seconds)
        return True

    def pause(self) -> bool:
        with self._lock:
            if self._phase is not TimerPhase.RUNNING:
                return False
            self._cancel_locked()
            self._phase = TimerPhase.PAUSED
        logger.debug("Timer paused at %ss", self._seconds)
        return True

    def complete(self) -> bool:
        with self._lock:
            if self._phase not in (TimerPhase.RUNNING, TimerPhase.PAUSED):
                return False
            if self._seconds == 0:
                return False
            self._cancel_locked()
            self._phase = TimerPhase.COMPLETED
        logger.debug("Timer completed with %ss", self._seconds)
        return True

    def reset(self) -> bool:
        with self._lock:
            self._cancel_locked()
            self._phase = TimerPhase.READY
            self._seconds = 0
            self.activity_id = None
        return True

    def tick(self) -> None:
        """Count one elapsed second while running."""
        with self._lock:
            if self._phase is TimerPhase.RUNNING:
                self._seconds += 1

    def snapshot(self) -> TimerSnapshot:
        with self._lock:
            return TimerSnapshot(self._phase, self._seconds, self.activity_id)

    def _tick(self, generation: int) -> None:
        with self._lock:
            # A tick scheduled before the last pause must not count.
            if generation != self._generation:
                return
            self.tick()

    def _cancel_locked(self) -> None:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class TimerController:
    """Single owner of a user's timer; only one activity is timed at a time."""

    def __init__(self, timer: Optional[StopwatchTimer] = None) -> None:
        self.timer = timer or StopwatchTimer()
        self._lock = threading.RLock()

    @property
    def has_unsaved_time(self) -> bool:
        return self.timer.phase is not TimerPhase.READY and self.timer.seconds > 0

    def start(self, activity_id: int) -> TimerSnapshot:
        with self._lock:
            owner = self.timer.activity_id
            if owner is not None and owner != activity_id:
                if self.timer.is_running or self.has_unsaved_time:
                    raise TimerBusyError(owner)
                self.timer.reset()
            if self.timer.phase is TimerPhase.COMPLETED:
                raise ConflictError("Timer is completed; save or discard it first")
            self.timer.activity_id = activity_id
            self.timer.start()
            return self.timer.snapshot()

    def pause(self) -> bool:
        return self.timer.pause()

    def complete(self) -> bool:
        return self.timer.complete()

    def reset(self) -> bool:
        return self.timer.reset()

    def save(self, store: "ActivityStore", notes: str = "") -> Session:
        """Persist the timed seconds as a session, then reset the timer.

        On failure the timer keeps its value so nothing the user timed is lost.
        """
        with self._lock:
            activity_id = self.timer.activity_id
            if activity_id is None:
                raise ValidationError("Timer is not tracking any activity")
            if self.timer.phase is not TimerPhase.COMPLETED and not self.timer.complete():
                raise ValidationError("Nothing to save: the timer has not counted any time")
            session = store.record_session(
                activity_id,
                self.timer.seconds,
                notes=notes,
                occurred_at=datetime.now(),
            )
            self.timer.reset()
            logger.info(
                "Saved %ss from timer for activity %s", session.duration, activity_id
            )
            return session

    def discard(self, confirmed: bool = False) -> None:
        with self._lock:
            if self.has_unsaved_time and not confirmed:
                raise ConfirmationRequiredError(
                    f"Discarding would lose {self.timer.seconds}s of unsaved time"
                )
            self.timer.reset()

    def shutdown(self) -> None:
        """Stop the tick on teardown; counted seconds stay available."""
        self.timer.pause()
