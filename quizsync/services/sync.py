"""Offline-first sync coordinator.

``record_event`` writes to the local store and returns as soon as that write
is done. In cloud mode it then queues the matching remote operation on the
per-key background queue; whatever happens remotely is logged and never
rolled back or reported to the caller. A failed local write is reported in
the outcome and nothing is queued.

Remote jobs are keyed by ``(user, app_id, question_id)`` (or by study date /
history for the non-question datasets) so read-modify-write cycles for the
same record never interleave.
"""

from __future__ import annotations

import logging
import random
import threading
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError

from quizsync.errors import InvalidAppError, InvalidEventError
from quizsync.schemas.event import (
    PAYLOAD_MODELS,
    AnswerPayload,
    BookmarkPayload,
    EventKind,
    EventOutcome,
    QuizCompletedPayload,
    StudyTimePayload,
)
from quizsync.schemas.progress import ProgressSnapshot, QuizResult, SyncReport
from quizsync.services.adaptive import (
    DEFAULT_CONFIG,
    AdaptiveConfig,
    AdaptiveLearningEngine,
    Clock,
    apply_correct,
    apply_wrong,
    utcnow,
)
from quizsync.services.identity import IdentityResolver
from quizsync.services.local_store import SEPARATOR, LocalStore
from quizsync.services.progress_store import ProgressStore, score_rate
from quizsync.services.remote_store import RemoteErrorKind, RemoteResult, RemoteStoreClient
from quizsync.services.task_queue import KeyedTaskQueue

logger = logging.getLogger(__name__)


class SyncCoordinator:
    def __init__(
        self,
        local: LocalStore,
        identity: IdentityResolver,
        *,
        remote: RemoteStoreClient | None = None,
        queue: KeyedTaskQueue | None = None,
        adaptive_config: AdaptiveConfig = DEFAULT_CONFIG,
        history_limit: int = 20,
        study_time_days: int = 84,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self.local = local
        self.identity = identity
        self.remote = remote
        self.queue = queue or KeyedTaskQueue()
        self.adaptive_config = adaptive_config
        self.history_limit = history_limit
        self.study_time_days = study_time_days
        self.clock = clock
        self.rng = rng or random.Random()
        self._failures_lock = threading.Lock()
        self._remote_failures = 0

    # ── wiring ────────────────────────────────────────────────────────────

    @property
    def cloud_active(self) -> bool:
        return self.identity.cloud and self.remote is not None and self.remote.configured

    @property
    def remote_failures(self) -> int:
        with self._failures_lock:
            return self._remote_failures

    def progress(self, app_id: str, user_name: str | None = None) -> ProgressStore:
        """Progress of *user_name*, or of the current user when not given."""
        if not app_id or SEPARATOR in app_id:
            raise InvalidAppError(f"App id must be non-empty and may not contain {SEPARATOR!r}")
        if user_name is None:
            user_name = self.identity.require_current_user()
        else:
            user_name = self.identity.resolve_user(user_name)
        return ProgressStore(self.local, user_name, app_id)

    def engine(self, app_id: str) -> AdaptiveLearningEngine:
        return AdaptiveLearningEngine(
            self.progress(app_id), self.adaptive_config, self.clock, self.rng
        )

    def _forward(self, key: tuple, label: str, fn: Callable[..., RemoteResult], *args: Any) -> None:
        def job() -> None:
            res = fn(*args)
            if not res.ok:
                with self._failures_lock:
                    self._remote_failures += 1
                logger.warning(
                    "Remote sync %s for %s failed (%s): %s",
                    label,
                    key,
                    res.error.kind.value,
                    res.error.message,
                )

        self.queue.submit(key, job)

    def flush(self, timeout: float | None = None) -> bool:
        """Block until queued remote work is done (for tests and shutdown)."""
        return self.queue.flush(timeout)

    # ── events ────────────────────────────────────────────────────────────

    def record_event(
        self, app_id: str, kind: EventKind | str, payload: dict[str, Any] | None = None
    ) -> EventOutcome:
        """Apply one user action locally, then mirror it remotely in the background."""
        try:
            kind = EventKind(kind)
            data = PAYLOAD_MODELS[kind].model_validate(payload or {})
        except (ValueError, ValidationError) as exc:
            raise InvalidEventError(str(exc)) from exc

        progress = self.progress(app_id)
        now = self.clock()
        handler = {
            EventKind.ANSWER: self._on_answer,
            EventKind.BOOKMARK_TOGGLED: self._on_bookmark,
            EventKind.QUIZ_COMPLETED: self._on_quiz_completed,
            EventKind.STUDY_TIME: self._on_study_time,
            EventKind.WRONG_ANSWERS_CLEARED: self._on_wrong_cleared,
        }[kind]
        state, remote_ops = handler(progress, data, now)

        if progress.failed_writes:
            logger.warning(
                "%s event for %s/%s not saved locally; nothing queued",
                kind.value,
                progress.user_name,
                app_id,
            )
            return EventOutcome(success=False, kind=kind, app_id=app_id, state=state)

        queued = False
        if remote_ops and self.cloud_active:
            for key, label, fn, args in remote_ops:
                self._forward(key, label, fn, *args)
            queued = True
        return EventOutcome(kind=kind, app_id=app_id, state=state, remote_queued=queued)

    # Each handler writes locally and returns (state, [(key, label, fn, args), ...]).

    def _on_answer(self, progress: ProgressStore, data: AnswerPayload, now: datetime):
        qid = data.question_id
        before = progress.get_wrong(qid)
        if data.is_correct:
            wrong = apply_correct(before, now)
        else:
            wrong = apply_wrong(before, qid, now)
        if wrong is not None or before is not None:
            progress.put_wrong(qid, wrong)
        adaptive = AdaptiveLearningEngine(progress, self.adaptive_config, lambda: now).on_answer(
            qid, data.is_correct
        )

        state = {
            "wrong_answer": wrong.model_dump(mode="json") if wrong else None,
            "adaptive": adaptive.model_dump(mode="json"),
            "status": adaptive.status.value,
        }
        user, app_id = progress.user_name, progress.app_id
        key = (user, app_id, qid)
        ops = []
        if self.remote is not None:
            wrong_fn = (
                self.remote.record_correct_answer if data.is_correct else self.remote.record_wrong_answer
            )
            ops = [
                (key, "wrong_answers", wrong_fn, (user, app_id, qid, now)),
                (
                    key,
                    "adaptive_learning",
                    self.remote.update_adaptive_learning,
                    (user, app_id, qid, data.is_correct, now),
                ),
            ]
        return state, ops

    def _on_bookmark(self, progress: ProgressStore, data: BookmarkPayload, now: datetime):
        bookmarked = progress.set_bookmark(data.question_id, data.bookmarked)
        user, app_id = progress.user_name, progress.app_id
        ops = []
        if self.remote is not None:
            fn = self.remote.add_bookmark if bookmarked else self.remote.remove_bookmark
            ops = [((user, app_id, data.question_id), "bookmarks", fn, (user, app_id, data.question_id))]
        return {"question_id": data.question_id, "bookmarked": bookmarked}, ops

    def _on_quiz_completed(self, progress: ProgressStore, data: QuizCompletedPayload, now: datetime):
        result = QuizResult(
            completed_at=now,
            app_id=progress.app_id,
            mode=data.mode,
            total_questions=data.total_questions,
            correct_count=data.correct_count,
            score_rate=score_rate(data.correct_count, data.total_questions),
            time_spent=data.time_spent,
        )
        progress.append_history(result, self.history_limit)
        stats = progress.add_to_stats(result)
        user, app_id = progress.user_name, progress.app_id
        ops = []
        if self.remote is not None:
            ops = [((user, app_id, "quiz_results"), "quiz_results", self.remote.insert_quiz_result, (user, result))]
        return {
            "result": result.model_dump(mode="json"),
            "stats": stats.model_dump(mode="json"),
        }, ops

    def _on_study_time(self, progress: ProgressStore, data: StudyTimePayload, now: datetime):
        today = now.date()
        entry = progress.add_study_time(today, data.duration_seconds, data.questions_answered)
        streak = progress.record_study_day(today)
        user, app_id = progress.user_name, progress.app_id
        ops = []
        if self.remote is not None:
            ops = [
                (
                    (user, app_id, "study_time", today.isoformat()),
                    "study_time",
                    self.remote.record_study_time,
                    (user, app_id, today, data.duration_seconds, data.questions_answered),
                )
            ]
        return {**entry.model_dump(mode="json"), "streak": streak.model_dump(mode="json")}, ops

    def _on_wrong_cleared(self, progress: ProgressStore, data: Any, now: datetime):
        progress.clear_wrong_answers()
        user, app_id = progress.user_name, progress.app_id
        ops = []
        if self.remote is not None:
            ops = [((user, app_id, "wrong_answers"), "wrong_answers", self.remote.clear_wrong_answers, (user, app_id))]
        return {"wrong_answers": 0}, ops

    # ── bulk transfer ─────────────────────────────────────────────────────

    def _unavailable_report(self, report: SyncReport) -> SyncReport:
        report.errors.append(
            {"type": "general", "kind": "unavailable", "message": "remote store not configured"}
        )
        return report

    def sync_local_snapshot_to_remote(
        self, app_id: str, user_name: str | None = None
    ) -> SyncReport:
        """Upsert every non-empty local record for *user_name* (default: current user).

        Adaptive and study-time rows are merged with the remote copy, so totals
        never go down. Safe to repeat: a second run (or a retry after a partial
        failure) leaves the remote state unchanged.
        """
        progress = self.progress(app_id, user_name)
        user = progress.user_name
        report = SyncReport(app_id=app_id, user_name=user, direction="upload")
        if self.remote is None or not self.remote.configured:
            return self._unavailable_report(report)

        # Let in-flight per-event writes land first.
        self.flush()

        account = self.remote.get_user(user)
        if account.ok and account.data is None:
            account = self.remote.create_user(user)
        if not account.ok and account.error.kind != RemoteErrorKind.CONFLICT:
            report.errors.append(
                {"type": "users", "kind": account.error.kind.value, "message": account.error.message}
            )
            return report

        snap = progress.snapshot()
        steps = [
            ("wrong_answers", snap.wrong_answers, self.remote.upsert_wrong_answers, (user, app_id)),
            ("bookmarks", snap.bookmarks, self.remote.upsert_bookmarks, (user, app_id)),
            ("adaptive_learning", snap.adaptive, self.remote.upsert_adaptive_learning, (user, app_id)),
            ("study_time", snap.study_time, self.remote.upsert_study_time, (user, app_id)),
            ("quiz_results", snap.history, self.remote.upsert_quiz_results, (user,)),
        ]
        for name, items, fn, args in steps:
            if not items:
                continue
            res = fn(*args, items)
            if res.ok:
                report.counts[name] = len(items)
            else:
                report.errors.append(
                    {"type": name, "kind": res.error.kind.value, "message": res.error.message}
                )

        if report.success:
            logger.info("Uploaded %s/%s snapshot: %s", user, app_id, report.counts)
        else:
            logger.warning("Partial upload of %s/%s: %s", user, app_id, report.errors)
        return report

    def sync_remote_snapshot_to_local(self, app_id: str) -> SyncReport:
        """Replace the local copy with the remote one; local data is untouched on any error."""
        progress = self.progress(app_id)
        user = progress.user_name
        report = SyncReport(app_id=app_id, user_name=user, direction="download")
        if self.remote is None or not self.remote.configured:
            return self._unavailable_report(report)

        self.flush()
        fetched = {
            "wrong_answers": self.remote.list_wrong_answers(user, app_id),
            "bookmarks": self.remote.list_bookmarks(user, app_id),
            "adaptive_learning": self.remote.list_adaptive_learning(user, app_id),
            "quiz_results": self.remote.list_quiz_results(user, app_id, limit=self.history_limit),
            "study_time": self.remote.list_study_time(
                user, app_id, days=self.study_time_days, today=self.clock().date()
            ),
        }
        for name, res in fetched.items():
            if not res.ok:
                report.errors.append(
                    {"type": name, "kind": res.error.kind.value, "message": res.error.message}
                )
        if report.errors:
            logger.warning("Download of %s/%s aborted: %s", user, app_id, report.errors)
            return report

        snapshot = ProgressSnapshot(
            app_id=app_id,
            user_name=user,
            wrong_answers=fetched["wrong_answers"].data,
            bookmarks=fetched["bookmarks"].data,
            adaptive=fetched["adaptive_learning"].data,
            history=fetched["quiz_results"].data,
            study_time=fetched["study_time"].data,
        )
        progress.replace(snapshot, self.history_limit)
        report.counts = {name: len(res.data) for name, res in fetched.items()}
        logger.info("Downloaded %s/%s snapshot: %s", user, app_id, report.counts)
        return report
