"""Exception types shared by the store, the timer and the web layer."""

from __future__ import annotations


class CodeTrackError(Exception):
    """Base class for every error raised by CodeTrack."""


class ValidationError(CodeTrackError, ValueError):
    """Input was rejected before any database call was made."""


class NotFoundError(CodeTrackError, LookupError):
    """The entity does not exist or belongs to another user."""


class PersistenceError(CodeTrackError):
    """The database call failed; in-memory state was left untouched."""


class ConflictError(CodeTrackError):
    """The request is valid but clashes with the current state."""


class TimerBusyError(ConflictError):
    """Another activity already owns the running or unsaved timer."""

    def __init__(self, active_activity_id: int) -> None:
        super().__init__(
            f"Timer is already tracking activity {active_activity_id}; "
            "save or discard it first."
        )
        self.active_activity_id = active_activity_id


class ConfirmationRequiredError(ConflictError):
    """Discarding the timer would throw away unsaved seconds."""
