from typer.testing import CliRunner

from codetrack.cli import app
from codetrack.db import SqliteRepository
from codetrack.models import ParentType
from codetrack.provisioning import ensure_user

runner = CliRunner()


def _seed_activity(db_path, user="alice", title="Routing"):
    repository = SqliteRepository(db_path)
    user_id = ensure_user(repository, user)
    course = next(c for c in repository.fetch_courses(user_id) if c.title == "Learn Python")
    return repository.create_activity(user_id, title, ParentType.COURSE, course.id).id


def test_log_records_time(tmp_path):
    db_path = tmp_path / "codetrack.db"
    activity_id = _seed_activity(db_path)

    result = runner.invoke(
        app,
        ["log", "--user", "alice", "--activity", str(activity_id), "--hours", "1",
         "--minutes", "30", "--db", str(db_path)],
    )

    assert result.exit_code == 0, result.output
    assert "Logged 1h 30m for Routing (total 1h 30m)" in result.output


def test_log_rejects_empty_time(tmp_path):
    db_path = tmp_path / "codetrack.db"
    activity_id = _seed_activity(db_path)

    result = runner.invoke(
        app, ["log", "--user", "alice", "--activity", str(activity_id), "--db", str(db_path)]
    )

    assert result.exit_code == 1
    assert "Please enter a valid time" in result.output


def test_log_against_someone_elses_activity(tmp_path):
    db_path = tmp_path / "codetrack.db"
    activity_id = _seed_activity(db_path, user="alice")

    result = runner.invoke(
        app,
        ["log", "--user", "bob", "--activity", str(activity_id), "--minutes", "5",
         "--db", str(db_path)],
    )

    assert result.exit_code == 1


def test_summary_for_new_user(tmp_path):
    result = runner.invoke(app, ["summary", "--user", "carol", "--db", str(tmp_path / "c.db")])
    assert result.exit_code == 0
    assert "No activities tracked yet." in result.output


def test_chart_by_week(tmp_path):
    db_path = tmp_path / "codetrack.db"
    activity_id = _seed_activity(db_path)
    runner.invoke(
        app,
        ["log", "--user", "alice", "--activity", str(activity_id), "--hours", "2",
         "--db", str(db_path)],
    )

    result = runner.invoke(
        app, ["chart", "--user", "alice", "--period", "week", "--db", str(db_path)]
    )

    assert result.exit_code == 0
    assert "Routing 2.0h" in result.output


def test_blank_user_is_reported_without_a_traceback(tmp_path):
    result = runner.invoke(app, ["summary", "--user", " ", "--db", str(tmp_path / "c.db")])
    assert result.exit_code == 1
    assert "Error: A user id is required" in result.output


def test_unusable_database_path(tmp_path):
    result = runner.invoke(
        app,
        ["log", "--user", "alice", "--activity", "1", "--minutes", "5", "--db", str(tmp_path)],
    )
    assert result.exit_code == 1
    assert "Error: " in result.output
