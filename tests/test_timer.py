import pytest

from codetrack.errors import (
    ConfirmationRequiredError,
    ConflictError,
    PersistenceError,
    TimerBusyError,
    ValidationError,
)
from codetrack.models import Session
from codetrack.timer import StopwatchTimer, TimerPhase


def test_pause_does_not_accumulate_time(scheduler):
    timer = StopwatchTimer(scheduler)

    assert timer.start()
    scheduler.advance(3)
    assert timer.pause()
    scheduler.advance(2)
    assert timer.start()
    scheduler.advance(2)

    assert timer.seconds == 5
    assert timer.phase is TimerPhase.RUNNING


def test_stale_tick_after_resume_is_ignored(scheduler):
    timer = StopwatchTimer(scheduler)
    timer.start()
    first_handle = scheduler.handles[0]
    timer.pause()
    timer.start()

    # A cancelled schedule firing late must not double count.
    first_handle.callback()
    scheduler.advance(1)

    assert timer.seconds == 1


def test_invalid_transitions_are_rejected(scheduler):
    timer = StopwatchTimer(scheduler)

    assert timer.pause() is False
    assert timer.complete() is False

    timer.start()
    assert timer.start() is False
    assert timer.complete() is False, "nothing counted yet"

    scheduler.advance(4)
    assert timer.complete()
    assert timer.phase is TimerPhase.COMPLETED
    assert timer.start() is False

    scheduler.advance(3)
    assert timer.seconds == 4


def test_reset_returns_to_ready(scheduler):
    timer = StopwatchTimer(scheduler)
    timer.activity_id = 7
    timer.start()
    scheduler.advance(10)

    timer.reset()
    scheduler.advance(2)

    snapshot = timer.snapshot()
    assert snapshot.phase is TimerPhase.READY
    assert snapshot.seconds == 0
    assert snapshot.activity_id is None
    assert snapshot.display == "00:00"


def test_snapshot_display(scheduler):
    timer = StopwatchTimer(scheduler)
    timer.start()
    scheduler.advance(3661)
    data = timer.snapshot().as_dict()
    assert data["display"] == "01:01:01"
    assert data["is_running"] is True


def test_controller_refuses_a_second_activity(controller, scheduler):
    controller.start(1)
    scheduler.advance(5)
    controller.pause()

    with pytest.raises(TimerBusyError) as excinfo:
        controller.start(2)
    assert excinfo.value.active_activity_id == 1

    snapshot = controller.start(1)
    assert snapshot.phase is TimerPhase.RUNNING
    assert snapshot.seconds == 5


def test_controller_switches_activity_when_nothing_was_counted(controller):
    controller.start(1)
    controller.pause()
    snapshot = controller.start(2)
    assert snapshot.activity_id == 2


def test_controller_requires_save_or_discard_after_complete(controller, scheduler):
    controller.start(1)
    scheduler.advance(2)
    controller.complete()
    with pytest.raises(ConflictError):
        controller.start(1)


def test_discard_needs_confirmation_for_unsaved_time(controller, scheduler):
    controller.start(3)
    scheduler.advance(30)

    with pytest.raises(ConfirmationRequiredError):
        controller.discard()
    assert controller.timer.seconds == 30

    controller.discard(confirmed=True)
    assert controller.timer.phase is TimerPhase.READY
    assert controller.timer.seconds == 0


def test_discard_without_time_needs_no_confirmation(controller):
    controller.start(3)
    controller.discard()
    assert controller.timer.phase is TimerPhase.READY


class _RecordingStore:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def record_session(self, activity_id, duration, notes="", occurred_at=None):
        if self.fail:
            raise PersistenceError("database is locked")
        self.calls.append((activity_id, duration, notes))
        return Session(id=1, activity_id=activity_id, duration=duration, occurred_at=occurred_at, notes=notes)


def test_save_records_and_resets(controller, scheduler):
    store = _RecordingStore()
    controller.start(9)
    scheduler.advance(42)

    session = controller.save(store, notes="done")

    assert store.calls == [(9, 42, "done")]
    assert session.duration == 42
    assert controller.timer.phase is TimerPhase.READY


def test_failed_save_keeps_the_timed_seconds(controller, scheduler):
    controller.start(9)
    scheduler.advance(42)
    controller.complete()

    with pytest.raises(PersistenceError):
        controller.save(_RecordingStore(fail=True))

    assert controller.timer.phase is TimerPhase.COMPLETED
    assert controller.timer.seconds == 42
    assert controller.timer.activity_id == 9


def test_save_without_time_is_rejected(controller):
    with pytest.raises(ValidationError):
        controller.save(_RecordingStore())
    controller.start(1)
    with pytest.raises(ValidationError):
        controller.save(_RecordingStore())
