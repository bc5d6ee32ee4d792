"""Where CodeTrack keeps its database and log file."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_path

APP_NAME = "CodeTrack"

DB_ENV_VAR = "CODETRACK_DB"


def get_data_dir() -> Path:
    path = user_data_path(APP_NAME, appauthor=False, roaming=True, ensure_exists=True)
    return Path(path)


def get_db_path() -> Path:
    """Database location; ``$CODETRACK_DB`` overrides the per-user default."""
    override = os.environ.get(DB_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return get_data_dir() / "codetrack.sqlite3"


def get_log_path() -> Path:
    return get_data_dir() / "codetrack.log"
