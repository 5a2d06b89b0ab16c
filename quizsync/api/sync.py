"""Bulk snapshot transfer between the local and the cloud store."""

from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from quizsync.api.deps import get_context
from quizsync.context import QuizSyncContext
from quizsync.schemas.common import TaskAccepted
from quizsync.tasks import upload_local_snapshot

router = APIRouter()


def _report_response(report) -> Any:
    body = {**report.model_dump(mode="json"), "success": report.success}
    code = status.HTTP_200_OK if report.success else status.HTTP_502_BAD_GATEWAY
    return JSONResponse(status_code=code, content=body)


@router.post("/{app_id}/sync/upload")
def upload(app_id: str, background: bool = False, ctx: QuizSyncContext = Depends(get_context)):
    """Push the current user's local data to the cloud (idempotent).

    With ``background=true`` the upload runs as a Celery task and the task id
    is returned immediately.
    """
    # Rejects a bad app id before anything is queued.
    user = ctx.sync.progress(app_id).user_name
    if background:
        task = upload_local_snapshot.delay(user, app_id)
        accepted = TaskAccepted(task_id=task.id, user_name=user, app_id=app_id)
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=accepted.model_dump())
    return _report_response(ctx.sync_local_snapshot_to_remote(app_id))


@router.post("/{app_id}/sync/download")
def download(app_id: str, ctx: QuizSyncContext = Depends(get_context)):
    """Replace the current user's local data with the cloud copy."""
    return _report_response(ctx.sync_remote_snapshot_to_local(app_id))
