"""Celery application for background snapshot uploads."""

from celery import Celery

from quizsync.config import settings

celery_app = Celery(
    "quizsync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    enable_utc=True,
    timezone="UTC",
    task_default_queue="quizsync.sync",
    task_acks_late=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    # Hard stop for an upload stuck on the remote.
    task_time_limit=int(settings.REMOTE_TIMEOUT_SECONDS * 30),
    result_expires=3600,
    # Eager mode runs uploads in-process, so no broker is needed in development.
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,
)

celery_app.autodiscover_tasks(["quizsync"])
