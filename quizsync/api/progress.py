"""Progress routes: answer events, adaptive state and question priority."""

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from quizsync.api.deps import get_context
from quizsync.context import QuizSyncContext
from quizsync.schemas.event import EventOutcome, RecordEventRequest
from quizsync.schemas.progress import (
    AdaptiveState,
    OverallStats,
    ProgressSnapshot,
    QuestionPriority,
    StudyStreak,
)

router = APIRouter()


class AnswerBody(BaseModel):
    is_correct: bool


class SelectionRequest(BaseModel):
    question_ids: list[int]
    count: int = Field(gt=0)


class SelectionResponse(BaseModel):
    question_ids: list[int]


@router.post("/{app_id}/events", response_model=EventOutcome)
def record_event(
    app_id: str,
    body: RecordEventRequest,
    response: Response,
    ctx: QuizSyncContext = Depends(get_context),
):
    """Persist one user action locally; cloud delivery happens in the background."""
    outcome = ctx.record_event(app_id, body.kind, body.payload)
    if not outcome.success:
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return outcome


@router.post("/{app_id}/adaptive/{question_id}", response_model=AdaptiveState)
def on_answer(
    app_id: str,
    question_id: int,
    body: AnswerBody,
    ctx: QuizSyncContext = Depends(get_context),
):
    return ctx.on_answer(app_id, question_id, body.is_correct)


@router.get("/{app_id}/priority", response_model=list[QuestionPriority])
def priority(
    app_id: str,
    question_ids: list[int] = Query(...),
    ctx: QuizSyncContext = Depends(get_context),
):
    return ctx.priorities(app_id, question_ids)


@router.post("/{app_id}/select", response_model=SelectionResponse)
def select_questions(
    app_id: str, body: SelectionRequest, ctx: QuizSyncContext = Depends(get_context)
):
    """Pick questions for the next quiz, favouring weak and recently missed ones."""
    return SelectionResponse(
        question_ids=ctx.select_questions(app_id, body.question_ids, body.count)
    )


@router.get("/{app_id}/progress", response_model=ProgressSnapshot)
def progress_snapshot(app_id: str, ctx: QuizSyncContext = Depends(get_context)):
    return ctx.progress_snapshot(app_id)


@router.get("/{app_id}/stats", response_model=OverallStats)
def overall_stats(app_id: str, ctx: QuizSyncContext = Depends(get_context)):
    return ctx.overall_stats(app_id)


@router.get("/{app_id}/streak", response_model=StudyStreak)
def study_streak(app_id: str, ctx: QuizSyncContext = Depends(get_context)):
    return ctx.study_streak(app_id)
