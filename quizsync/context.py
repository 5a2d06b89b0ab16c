"""Session context: builds every collaborator once and tears them down together.

This is the surface the quiz UI talks to::

    with QuizSyncContext(settings) as ctx:
        ctx.register_user("Tanaka")
        ctx.select_user("Tanaka")
        ctx.record_event("fp3", "answer", {"question_id": 5, "is_correct": False})
        ctx.priorities("fp3", [1, 2, 5])
"""

from __future__ import annotations

import logging
import random
from typing import Any, Iterable

import httpx
from sqlalchemy.engine import Engine

from quizsync.config import Settings, SyncMode
from quizsync.db.session import create_local_engine, init_local_db
from quizsync.schemas.event import EventKind, EventOutcome
from quizsync.schemas.progress import (
    AdaptiveState,
    OverallStats,
    ProgressSnapshot,
    QuestionPriority,
    StudyStreak,
    SyncReport,
)
from quizsync.schemas.user import RegistrationResult
from quizsync.services.adaptive import AdaptiveConfig, Clock, utcnow
from quizsync.services.identity import IdentityResolver
from quizsync.services.local_store import LocalStore
from quizsync.services.remote_store import RemoteStoreClient
from quizsync.services.sync import SyncCoordinator
from quizsync.services.task_queue import KeyedTaskQueue

logger = logging.getLogger(__name__)


class QuizSyncContext:
    def __init__(
        self,
        settings: Settings,
        *,
        engine: Engine | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings
        self._owns_engine = engine is None
        if engine is None:
            engine = create_local_engine(settings.LOCAL_DATABASE_URL, echo=settings.DATABASE_ECHO)
        else:
            init_local_db(engine)
        self.engine = engine
        self.local = LocalStore(engine)
        self.adaptive_config = AdaptiveConfig.from_settings(settings)

        # The mode is fixed here for the lifetime of the context.
        if settings.MODE == SyncMode.CLOUD and not settings.cloud_enabled:
            logger.warning("Cloud mode requested but no remote store is configured; using local mode")
        self.mode = SyncMode.CLOUD if settings.cloud_enabled else SyncMode.LOCAL
        self.remote: RemoteStoreClient | None = None
        if self.mode == SyncMode.CLOUD:
            self.remote = RemoteStoreClient.from_settings(
                settings, transport=transport, adaptive_config=self.adaptive_config
            )

        self.queue = KeyedTaskQueue(max_workers=settings.SYNC_WORKERS)
        self.identity = IdentityResolver(
            engine, self.local, self.mode, remote=self.remote, queue=self.queue
        )
        self.sync = SyncCoordinator(
            self.local,
            self.identity,
            remote=self.remote,
            queue=self.queue,
            adaptive_config=self.adaptive_config,
            history_limit=settings.HISTORY_LIMIT,
            study_time_days=settings.STUDY_TIME_HISTORY_DAYS,
            clock=clock,
            rng=rng,
        )
        self._closed = False
        logger.info("quizsync context ready (%s mode)", self.mode.value)

    # ── identity ──────────────────────────────────────────────────────────

    def current_user(self) -> str | None:
        return self.identity.current_user()

    def list_users(self) -> list[str]:
        return self.identity.list_users()

    def register_user(self, name: str) -> RegistrationResult:
        return self.identity.register_user(name)

    def select_user(self, name: str) -> str:
        return self.identity.select_user(name)

    def delete_user(self, name: str) -> int:
        return self.identity.delete_user(name)

    # ── progress ──────────────────────────────────────────────────────────

    def record_event(
        self, app_id: str, kind: EventKind | str, payload: dict[str, Any] | None = None
    ) -> EventOutcome:
        return self.sync.record_event(app_id, kind, payload)

    def on_answer(self, app_id: str, question_id: int, is_correct: bool) -> AdaptiveState:
        """Update only the adaptive state; ``record_event`` is the full answer path."""
        return self.sync.engine(app_id).on_answer(question_id, is_correct)

    def priorities(self, app_id: str, question_ids: Iterable[int]) -> list[QuestionPriority]:
        return self.sync.engine(app_id).priorities(question_ids)

    def select_questions(self, app_id: str, question_ids: Iterable[int], count: int) -> list[int]:
        return self.sync.engine(app_id).select(question_ids, count)

    def progress_snapshot(self, app_id: str) -> ProgressSnapshot:
        return self.sync.progress(app_id).snapshot()

    def overall_stats(self, app_id: str) -> OverallStats:
        return self.sync.progress(app_id).stats()

    def study_streak(self, app_id: str) -> StudyStreak:
        return self.sync.progress(app_id).streak()

    # ── bulk sync ─────────────────────────────────────────────────────────

    def sync_local_snapshot_to_remote(
        self, app_id: str, user_name: str | None = None
    ) -> SyncReport:
        return self.sync.sync_local_snapshot_to_remote(app_id, user_name)

    def sync_remote_snapshot_to_local(self, app_id: str) -> SyncReport:
        return self.sync.sync_remote_snapshot_to_local(app_id)

    def flush(self, timeout: float | None = None) -> bool:
        return self.sync.flush(timeout)

    # ── lifecycle ─────────────────────────────────────────────────────────

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.queue.close()
        if self.remote is not None:
            self.remote.close()
        if self._owns_engine:
            self.engine.dispose()
        logger.info("quizsync context closed")

    def __enter__(self) -> "QuizSyncContext":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
