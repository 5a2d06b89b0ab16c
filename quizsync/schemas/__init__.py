"""Pydantic schemas, re-exported for route modules."""

from quizsync.schemas.common import ErrorResponse, SuccessResponse, TaskAccepted  # noqa: F401
from quizsync.schemas.event import (  # noqa: F401
    EventKind,
    EventOutcome,
    RecordEventRequest,
)
from quizsync.schemas.progress import (  # noqa: F401
    AdaptiveState,
    MasteryStatus,
    OverallStats,
    ProgressSnapshot,
    QuestionPriority,
    QuizResult,
    StudyStreak,
    StudyTimeEntry,
    SyncReport,
    WrongAnswerRecord,
)
from quizsync.schemas.user import (  # noqa: F401
    CurrentUserRead,
    RegistrationResult,
    RegistrationStatus,
    UserCreate,
    UserList,
    UserSelect,
)
