"""Background tasks executed by Celery workers."""

import logging

from quizsync.celery_app import celery_app
from quizsync.config import settings
from quizsync.context import QuizSyncContext

logger = logging.getLogger(__name__)


@celery_app.task(name="upload_local_snapshot")
def upload_local_snapshot(user_name: str, app_id: str) -> dict:
    """Upload one user's local progress for *app_id* to the cloud store.

    Steps:
        1. Build a session context from settings
        2. Upsert *user_name*'s local snapshot remotely; the installation's
           current user is left as it was
        3. Wait for queued writes, tear the context down

    Not retried here: the upload is idempotent, so callers simply run it again.
    """
    with QuizSyncContext(settings) as ctx:
        report = ctx.sync_local_snapshot_to_remote(app_id, user_name)
        ctx.flush()

    if report.success:
        logger.info("Snapshot upload complete for %s/%s → %s", user_name, app_id, report.counts)
    else:
        logger.warning("Snapshot upload for %s/%s had errors: %s", user_name, app_id, report.errors)
    return {**report.model_dump(mode="json"), "success": report.success}
