"""Response envelopes shared by several routers."""

from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body returned for every ``QuizSyncError``."""

    success: bool = False
    error_code: str
    message: str


class SuccessResponse(BaseModel):
    success: bool = True
    message: str = "ok"
    data: dict[str, Any] | None = None


class TaskAccepted(BaseModel):
    """A snapshot upload handed to the Celery worker."""

    success: bool = True
    task_id: str
    user_name: str
    app_id: str
