"""Event payloads accepted by the sync coordinator."""

import enum
from typing import Any

from pydantic import BaseModel, Field


class EventKind(str, enum.Enum):
    ANSWER = "answer"
    BOOKMARK_TOGGLED = "bookmark_toggled"
    QUIZ_COMPLETED = "quiz_completed"
    STUDY_TIME = "study_time"
    WRONG_ANSWERS_CLEARED = "wrong_answers_cleared"


class AnswerPayload(BaseModel):
    question_id: int
    is_correct: bool


class BookmarkPayload(BaseModel):
    question_id: int
    # None means "flip whatever is stored"
    bookmarked: bool | None = None


class QuizCompletedPayload(BaseModel):
    mode: str = "unknown"
    total_questions: int = Field(gt=0)
    correct_count: int = Field(ge=0)
    time_spent: int | None = None


class StudyTimePayload(BaseModel):
    duration_seconds: int = Field(ge=0)
    questions_answered: int = Field(default=0, ge=0)


class EmptyPayload(BaseModel):
    pass


PAYLOAD_MODELS: dict[EventKind, type[BaseModel]] = {
    EventKind.ANSWER: AnswerPayload,
    EventKind.BOOKMARK_TOGGLED: BookmarkPayload,
    EventKind.QUIZ_COMPLETED: QuizCompletedPayload,
    EventKind.STUDY_TIME: StudyTimePayload,
    EventKind.WRONG_ANSWERS_CLEARED: EmptyPayload,
}


class RecordEventRequest(BaseModel):
    """POST /api/apps/{app_id}/events"""

    kind: EventKind
    payload: dict[str, Any] = {}


class EventOutcome(BaseModel):
    """Result of a local write; remote delivery happens later.

    ``success`` is False when the local write failed; nothing is queued then.
    """

    success: bool = True
    kind: EventKind
    app_id: str
    state: dict[str, Any] | None = None
    remote_queued: bool = False
