"""Health check endpoint."""

from fastapi import APIRouter, Depends

from quizsync.api.deps import get_context
from quizsync.context import QuizSyncContext

router = APIRouter()


@router.get("/health")
def health(ctx: QuizSyncContext = Depends(get_context)):
    return {
        "status": "healthy",
        "service": "quizsync",
        "mode": ctx.mode.value,
        "pending_sync_jobs": ctx.queue.pending,
    }
