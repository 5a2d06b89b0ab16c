"""Exceptions raised synchronously to callers.

Only invalid caller input interrupts the calling flow. Remote failures are
returned as values (see ``quizsync.services.remote_store.RemoteError``).
"""


class QuizSyncError(Exception):
    """Base class for caller-facing errors."""

    error_code = "quizsync_error"


class InvalidUserError(QuizSyncError):
    """User name is empty, too long, or contains a reserved character."""

    error_code = "invalid_user"


class UnknownUserError(QuizSyncError):
    """User name is not registered in this installation."""

    error_code = "unknown_user"


class NoCurrentUserError(QuizSyncError):
    """An operation needs a current user but none is selected."""

    error_code = "no_current_user"


class InvalidEventError(QuizSyncError):
    """Event kind is unknown or its payload is malformed."""

    error_code = "invalid_event"


class InvalidAppError(QuizSyncError):
    """App id is empty or contains a reserved character."""

    error_code = "invalid_app"
