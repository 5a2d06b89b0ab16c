"""Progress record schemas shared by the local and remote stores."""

import enum
from datetime import date, datetime

from pydantic import BaseModel, Field


class MasteryStatus(str, enum.Enum):
    UNSEEN = "unseen"
    LEARNING = "learning"
    MASTERED = "mastered"


class WrongAnswerRecord(BaseModel):
    """Active wrong-answer counter for one question. Never stored at zero."""

    question_id: int
    wrong_count: int = Field(ge=0)
    last_wrong_at: datetime | None = None
    last_correct_at: datetime | None = None


class AdaptiveState(BaseModel):
    """Per-question adaptive-learning counters."""

    question_id: int
    consecutive_correct: int = Field(default=0, ge=0)
    total_correct: int = Field(default=0, ge=0)
    total_attempts: int = Field(default=0, ge=0)
    last_answered_at: datetime | None = None
    mastered_at: datetime | None = None

    @property
    def status(self) -> MasteryStatus:
        if self.total_attempts == 0:
            return MasteryStatus.UNSEEN
        if self.mastered_at is not None:
            return MasteryStatus.MASTERED
        return MasteryStatus.LEARNING


class StudyTimeEntry(BaseModel):
    """Accumulated study time for one calendar day."""

    study_date: date
    duration_seconds: int = Field(default=0, ge=0)
    questions_answered: int = Field(default=0, ge=0)


class StudyStreak(BaseModel):
    """Consecutive calendar days with any study time."""

    current: int = Field(default=0, ge=0)
    last_study_date: date | None = None


class QuizResult(BaseModel):
    """One completed quiz. Immutable once written."""

    completed_at: datetime
    app_id: str
    mode: str = "unknown"
    total_questions: int = Field(ge=0)
    correct_count: int = Field(ge=0)
    score_rate: float = 0.0
    time_spent: int | None = None


class OverallStats(BaseModel):
    total_quizzes: int = 0
    total_questions: int = 0
    total_correct: int = 0
    overall_rate: float = 0.0


class ProgressSnapshot(BaseModel):
    """Everything stored for one user + app."""

    app_id: str
    user_name: str
    wrong_answers: list[WrongAnswerRecord] = []
    bookmarks: list[int] = []
    adaptive: list[AdaptiveState] = []
    history: list[QuizResult] = []
    study_time: list[StudyTimeEntry] = []


class QuestionPriority(BaseModel):
    """Selection weight for one question at a given instant."""

    question_id: int
    score: float
    eligible: bool
    status: MasteryStatus


class SyncReport(BaseModel):
    """Outcome of a bulk snapshot transfer between stores."""

    app_id: str
    user_name: str
    direction: str = "upload"
    counts: dict[str, int] = {}
    errors: list[dict[str, str]] = []

    @property
    def success(self) -> bool:
        return not self.errors
