from datetime import timedelta

import pytest

from codetrack.db import SqliteRepository
from codetrack.provisioning import ensure_user
from codetrack.store import ActivityStore
from codetrack.timer import StopwatchTimer, TimerController


class ManualHandle:
    def __init__(self, callback):
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Tick source the tests advance by hand instead of waiting on the clock."""

    def __init__(self):
        self.handles = []

    def schedule(self, callback, interval: timedelta):
        handle = ManualHandle(callback)
        self.handles.append(handle)
        return handle

    def advance(self, ticks=1):
        for _ in range(ticks):
            for handle in list(self.handles):
                if not handle.cancelled:
                    handle.callback()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def repository(tmp_path):
    return SqliteRepository(tmp_path / "codetrack.db")


@pytest.fixture
def store(repository):
    user_id = ensure_user(repository, "user_1")
    activity_store = ActivityStore(repository, user_id)
    activity_store.load()
    return activity_store


@pytest.fixture
def controller(scheduler):
    return TimerController(StopwatchTimer(scheduler))
