"""FastAPI dependencies shared across routes."""

from fastapi import Request

from quizsync.context import QuizSyncContext


def get_context(request: Request) -> QuizSyncContext:
    """Return the session context created in the app lifespan."""
    return request.app.state.context
