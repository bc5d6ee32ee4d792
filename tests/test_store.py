import logging
from datetime import datetime, timedelta, timezone

import pytest

from codetrack.errors import NotFoundError, PersistenceError, ValidationError
from codetrack.models import ActivityRecord, ParentType
from codetrack.store import ActivityStore, duration_from_parts


def _project(store, title):
    return next(p for p in store.projects if p.title == title)


def _course(store, title):
    return next(c for c in store.courses if c.title == title)


def test_load_exposes_starter_containers(store):
    assert sorted(c.title for c in store.courses) == [
        "Advanced JavaScript",
        "Learn Python",
        "Web Development Bootcamp",
    ]
    assert sorted(p.title for p in store.projects) == [
        "E-commerce App",
        "Mobile Weather App",
        "Personal Portfolio",
    ]
    assert store.activities == []


def test_timed_session_under_a_project(store, repository):
    project = _project(store, "E-commerce App")
    activity = store.create_activity("Refactor Module", "project", project.id)

    session = store.record_session(activity.id, 125, notes="cleanup")

    assert activity.parent_type is ParentType.PROJECT
    assert activity.parent_title == "E-commerce App"
    assert activity.total_seconds == 125
    assert activity.total_time == "0h 2m"
    assert activity.sessions[0].notes == "cleanup"
    assert session.id == activity.sessions[0].id

    reloaded = ActivityStore(repository, store.user_id)
    reloaded.load()
    assert reloaded.get_activity(activity.id).total_time == "0h 2m"


def test_manual_log_for_a_course(store):
    course = _course(store, "Learn Python")
    activity = store.create_activity("Variables and Types", ParentType.COURSE, course.id)

    store.record_session(activity.id, duration_from_parts(2, 15))

    assert activity.total_seconds == 8100
    assert activity.total_time == "2h 15m"
    assert store.activities_for("course", course.id) == [activity]


def test_sessions_are_kept_newest_first(store):
    course = _course(store, "Learn Python")
    activity = store.create_activity("Loops", "course", course.id)
    now = datetime.now()

    store.record_session(activity.id, 60, occurred_at=now - timedelta(days=2))
    store.record_session(activity.id, 120, occurred_at=now)
    store.record_session(activity.id, 180, occurred_at=now - timedelta(days=1))

    assert [s.duration for s in activity.sessions] == [120, 180, 60]


def test_aware_timestamps_are_stored_as_local_time(store):
    course = _course(store, "Learn Python")
    activity = store.create_activity("Classes", "course", course.id)
    moment = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)

    session = store.record_session(activity.id, 60, occurred_at=moment)

    assert session.occurred_at.tzinfo is None
    assert session.occurred_at == moment.astimezone().replace(tzinfo=None)


def test_deleting_a_session_restores_the_total(store):
    project = _project(store, "Personal Portfolio")
    activity = store.create_activity("Hero section", "project", project.id)
    store.record_session(activity.id, 600)
    before = activity.total_seconds

    store.record_session(activity.id, 90, occurred_at=datetime.now() + timedelta(minutes=1))
    removed = store.delete_session(activity.id, 0)

    assert removed.duration == 90
    assert activity.total_seconds == before


def test_out_of_range_session_index(store):
    project = _project(store, "Personal Portfolio")
    activity = store.create_activity("Footer", "project", project.id)
    store.record_session(activity.id, 300)

    for index in (1, -1):
        with pytest.raises(NotFoundError):
            store.delete_session(activity.id, index)
    assert activity.total_seconds == 300


@pytest.mark.parametrize("title", ["", "   "])
def test_blank_titles_are_rejected(store, title):
    course = _course(store, "Learn Python")
    with pytest.raises(ValidationError):
        store.create_activity(title, "course", course.id)
    with pytest.raises(ValidationError):
        store.create_course(title)
    assert store.activities == []


@pytest.mark.parametrize("duration", [0, -5, 1.5, True])
def test_invalid_durations_are_rejected(store, duration):
    course = _course(store, "Learn Python")
    activity = store.create_activity("Functions", "course", course.id)
    with pytest.raises(ValidationError):
        store.record_session(activity.id, duration)
    assert activity.sessions == []


def test_duration_from_parts_validation():
    assert duration_from_parts(0, 45) == 2700
    with pytest.raises(ValidationError, match="valid time"):
        duration_from_parts(0, 0)
    with pytest.raises(ValidationError):
        duration_from_parts(-1, 30)


def test_unknown_parent_is_rejected(store):
    with pytest.raises(ValidationError):
        store.create_activity("Sketch", "workshop", 1)
    with pytest.raises(NotFoundError):
        store.create_activity("Sketch", "project", 9999)


def test_failed_write_leaves_state_unchanged(store, monkeypatch):
    course = _course(store, "Advanced JavaScript")
    activity = store.create_activity("Closures", "course", course.id)
    store.record_session(activity.id, 240)
    revision = store.revision

    def locked(*args, **kwargs):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(store.repository, "create_session", locked)
    monkeypatch.setattr(store.repository, "delete_activity", locked)

    with pytest.raises(PersistenceError):
        store.record_session(activity.id, 60)
    with pytest.raises(PersistenceError):
        store.delete_activity(activity.id)

    assert activity.total_seconds == 240
    assert store.get_activity(activity.id) is activity
    assert store.revision == revision


def test_refresh_is_discarded_when_a_write_lands_mid_fetch(store, monkeypatch):
    course = _course(store, "Learn Python")
    activity = store.create_activity("Generators", "course", course.id)
    original_fetch = store.repository.fetch_activities

    def fetch_with_concurrent_write(user_id):
        records = original_fetch(user_id)
        store.record_session(activity.id, 75)
        return records

    monkeypatch.setattr(store.repository, "fetch_activities", fetch_with_concurrent_write)

    assert store.refresh() is False
    assert store.get_activity(activity.id).total_seconds == 75


def test_create_does_not_duplicate_a_row_a_refresh_already_loaded(store, monkeypatch):
    real_create_course = store.repository.create_course
    real_create_activity = store.repository.create_activity

    def create_course_then_refresh(*args, **kwargs):
        course = real_create_course(*args, **kwargs)
        assert store.refresh() is True
        return course

    def create_activity_then_refresh(*args, **kwargs):
        record = real_create_activity(*args, **kwargs)
        assert store.refresh() is True
        return record

    monkeypatch.setattr(store.repository, "create_course", create_course_then_refresh)
    monkeypatch.setattr(store.repository, "create_activity", create_activity_then_refresh)

    course = store.create_course("Databases")
    activity = store.create_activity("Indexes", "course", course.id)

    assert [c.id for c in store.courses].count(course.id) == 1
    assert store.courses[0] is course
    assert [a.id for a in store.activities] == [activity.id]
    assert store.get_activity(activity.id) is activity


def test_refresh_picks_up_changes_from_elsewhere(store, repository):
    course = _course(store, "Learn Python")
    other = ActivityStore(repository, store.user_id)
    other.load()
    other.create_activity("Decorators", "course", course.id)

    assert store.refresh() is True
    assert [a.title for a in store.activities] == ["Decorators"]


def test_orphan_activities_are_skipped(store, monkeypatch, caplog):
    orphan = ActivityRecord(
        id=999,
        title="Ghost",
        description="",
        color=None,
        course_id=4242,
        project_id=None,
    )
    monkeypatch.setattr(store.repository, "fetch_activities", lambda user_id: [orphan])

    with caplog.at_level(logging.WARNING, logger="codetrack.store"):
        store.load()

    assert store.activities == []
    assert "Skipping activity 999" in caplog.text


def test_renaming_a_parent_updates_its_activities(store):
    project = _project(store, "Mobile Weather App")
    activity = store.create_activity("Forecast screen", "project", project.id)

    store.update_project(project.id, title="Weather Station", color="orange")

    assert activity.parent_title == "Weather Station"
    assert activity.parent_color == "orange"
    assert _project(store, "Weather Station").description == project.description


def test_deleting_a_parent_removes_its_activities(store, repository):
    course = _course(store, "Web Development Bootcamp")
    kept = store.create_activity("CSS Grid", "course", _course(store, "Learn Python").id)
    store.create_activity("Flexbox", "course", course.id)

    store.delete_course(course.id)

    assert [a.id for a in store.activities] == [kept.id]
    with pytest.raises(NotFoundError):
        store.get_parent("course", course.id)

    reloaded = ActivityStore(repository, store.user_id)
    reloaded.load()
    assert [a.id for a in reloaded.activities] == [kept.id]


def test_new_parents_use_default_colours(store):
    course = store.create_course("Rust for Pythonistas")
    project = store.create_project("CLI toolkit", description="Side project")

    assert course.color == "blue"
    assert project.color == "green"
    assert store.courses[0] is course
    assert store.projects[0] is project


def test_update_activity(store):
    project = _project(store, "E-commerce App")
    activity = store.create_activity("Checkout", "project", project.id)

    store.update_activity(activity.id, description="Stripe integration", color="red")

    assert activity.title == "Checkout"
    assert activity.description == "Stripe integration"
    assert activity.color == "red"
    with pytest.raises(ValidationError):
        store.update_activity(activity.id, title=" ")


def test_streak_days_are_recorded(store):
    course = _course(store, "Learn Python")
    activity = store.create_activity("Modules", "course", course.id)
    store.record_session(activity.id, 60, occurred_at=datetime(2025, 3, 14, 9, 0))
    store.record_session(activity.id, 60, occurred_at=datetime(2025, 3, 15, 9, 0))
    store.record_session(activity.id, 60, occurred_at=datetime(2025, 3, 15, 18, 0))

    assert [d.isoformat() for d in store.streaks()] == ["2025-03-15", "2025-03-14"]
