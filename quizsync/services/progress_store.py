"""Typed views over one user's progress data for one app.

Each dataset is a single JSON document in the local store:

    wrong       {"<question_id>": WrongAnswerRecord, ...}
    bookmarks   [question_id, ...]
    adaptive    {"<question_id>": AdaptiveState, ...}
    history     [QuizResult, ...]            (oldest first, capped)
    study_time  {"<YYYY-MM-DD>": StudyTimeEntry, ...}
    stats       OverallStats                 (running totals, never capped)
    streak      StudyStreak                  (consecutive study days)

Unreadable documents or records are skipped with a warning; they never
raise.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from quizsync.schemas.progress import (
    AdaptiveState,
    OverallStats,
    ProgressSnapshot,
    QuizResult,
    StudyStreak,
    StudyTimeEntry,
    WrongAnswerRecord,
)
from quizsync.services.local_store import LocalStore

logger = logging.getLogger(__name__)

WRONG_KEY = "wrong"
BOOKMARKS_KEY = "bookmarks"
ADAPTIVE_KEY = "adaptive"
HISTORY_KEY = "history"
STUDY_TIME_KEY = "study_time"
STATS_KEY = "stats"
STREAK_KEY = "streak"

ALL_KEYS = (
    WRONG_KEY, BOOKMARKS_KEY, ADAPTIVE_KEY, HISTORY_KEY, STUDY_TIME_KEY, STATS_KEY, STREAK_KEY
)

M = TypeVar("M", bound=BaseModel)


def score_rate(correct: int, total: int, *, digits: int = 2) -> float:
    """Percentage of *correct* out of *total*; 0 when nothing was asked."""
    if total <= 0:
        return 0.0
    return round(correct / total * 100, digits)


def _parse(model: type[M], raw: Any, where: str) -> M | None:
    try:
        return model.model_validate(raw)
    except ValidationError:
        logger.warning("Skipping unreadable %s record in %s", model.__name__, where)
        return None


class ProgressStore:
    """Read/write progress records for ``(user_name, app_id)``."""

    def __init__(self, local: LocalStore, user_name: str, app_id: str) -> None:
        self.local = local
        self.user_name = user_name
        self.app_id = app_id
        # Writes that did not reach the local store.
        self.failed_writes = 0

    def _get(self, key: str, default: Any) -> Any:
        value = self.local.get(self.user_name, self.app_id, key, default)
        if not isinstance(value, type(default)):
            logger.warning("Unexpected %s document for %s/%s", key, self.user_name, self.app_id)
            return default
        return value

    def _set(self, key: str, value: Any) -> bool:
        saved = self.local.set(self.user_name, self.app_id, key, value)
        if not saved:
            self.failed_writes += 1
            logger.warning("Local write of %s failed for %s/%s", key, self.user_name, self.app_id)
        return saved

    def _keyed(self, key: str, model: type[M]) -> dict[int, M]:
        out: dict[int, M] = {}
        for qid, raw in self._get(key, {}).items():
            if not isinstance(raw, dict):
                continue
            record = _parse(model, {**raw, "question_id": qid}, key)
            if record is not None:
                out[record.question_id] = record
        return out

    @staticmethod
    def _dump_keyed(records: dict[int, M]) -> dict[str, Any]:
        return {str(qid): r.model_dump(mode="json") for qid, r in sorted(records.items())}

    # ── wrong answers ─────────────────────────────────────────────────────

    def wrong_answers(self) -> dict[int, WrongAnswerRecord]:
        return self._keyed(WRONG_KEY, WrongAnswerRecord)

    def get_wrong(self, question_id: int) -> WrongAnswerRecord | None:
        return self.wrong_answers().get(question_id)

    def put_wrong(self, question_id: int, record: WrongAnswerRecord | None) -> bool:
        """Store *record*; ``None`` (or a zero count) deletes the counter."""
        records = self.wrong_answers()
        if record is None or record.wrong_count <= 0:
            records.pop(question_id, None)
        else:
            records[question_id] = record
        return self.save_wrong_answers(records)

    def save_wrong_answers(self, records: dict[int, WrongAnswerRecord]) -> bool:
        live = {qid: r for qid, r in records.items() if r.wrong_count > 0}
        return self._set(WRONG_KEY, self._dump_keyed(live))

    def clear_wrong_answers(self) -> bool:
        return self.local.remove(self.user_name, self.app_id, WRONG_KEY)

    # ── bookmarks ─────────────────────────────────────────────────────────

    def bookmarks(self) -> list[int]:
        out: list[int] = []
        for qid in self._get(BOOKMARKS_KEY, []):
            if isinstance(qid, int) and qid not in out:
                out.append(qid)
        return out

    def save_bookmarks(self, question_ids: list[int]) -> bool:
        return self._set(BOOKMARKS_KEY, sorted(set(question_ids)))

    def set_bookmark(self, question_id: int, bookmarked: bool | None = None) -> bool:
        """Add or remove a bookmark; ``None`` toggles. Returns the new state."""
        current = set(self.bookmarks())
        if bookmarked is None:
            bookmarked = question_id not in current
        if bookmarked:
            current.add(question_id)
        else:
            current.discard(question_id)
        self.save_bookmarks(list(current))
        return bookmarked

    # ── adaptive learning ─────────────────────────────────────────────────

    def adaptive(self) -> dict[int, AdaptiveState]:
        return self._keyed(ADAPTIVE_KEY, AdaptiveState)

    def get_adaptive(self, question_id: int) -> AdaptiveState | None:
        return self.adaptive().get(question_id)

    def put_adaptive(self, state: AdaptiveState) -> bool:
        states = self.adaptive()
        states[state.question_id] = state
        return self.save_adaptive(states)

    def save_adaptive(self, states: dict[int, AdaptiveState]) -> bool:
        return self._set(ADAPTIVE_KEY, self._dump_keyed(states))

    # ── quiz history ──────────────────────────────────────────────────────

    def history(self) -> list[QuizResult]:
        out = []
        for raw in self._get(HISTORY_KEY, []):
            result = _parse(QuizResult, raw, HISTORY_KEY)
            if result is not None:
                out.append(result)
        return out

    def append_history(self, result: QuizResult, limit: int) -> list[QuizResult]:
        """Append *result*, keeping only the newest *limit* entries."""
        entries = self.history()
        entries.append(result)
        if limit > 0:
            entries = entries[-limit:]
        self.save_history(entries)
        return entries

    def save_history(self, entries: list[QuizResult]) -> bool:
        return self._set(HISTORY_KEY, [e.model_dump(mode="json") for e in entries])

    # ── running totals (not capped like history) ─────────────────────────

    def stats(self) -> OverallStats:
        stats = _parse(OverallStats, self._get(STATS_KEY, {}), STATS_KEY)
        return stats or OverallStats()

    def add_to_stats(self, result: QuizResult) -> OverallStats:
        stats = self.stats()
        total_questions = stats.total_questions + result.total_questions
        total_correct = stats.total_correct + result.correct_count
        stats = OverallStats(
            total_quizzes=stats.total_quizzes + 1,
            total_questions=total_questions,
            total_correct=total_correct,
            overall_rate=score_rate(total_correct, total_questions, digits=1),
        )
        self._set(STATS_KEY, stats.model_dump(mode="json"))
        return stats

    # ── study time ────────────────────────────────────────────────────────

    def study_time(self) -> dict[date, StudyTimeEntry]:
        out: dict[date, StudyTimeEntry] = {}
        for day, raw in self._get(STUDY_TIME_KEY, {}).items():
            if not isinstance(raw, dict):
                continue
            entry = _parse(StudyTimeEntry, {**raw, "study_date": day}, STUDY_TIME_KEY)
            if entry is not None:
                out[entry.study_date] = entry
        return out

    def add_study_time(
        self, study_date: date, duration_seconds: int, questions_answered: int
    ) -> StudyTimeEntry:
        """Accumulate into the entry for *study_date*."""
        entries = self.study_time()
        entry = entries.get(study_date) or StudyTimeEntry(study_date=study_date)
        entry = entry.model_copy(
            update={
                "duration_seconds": entry.duration_seconds + duration_seconds,
                "questions_answered": entry.questions_answered + questions_answered,
            }
        )
        entries[study_date] = entry
        self.save_study_time(entries)
        return entry

    def save_study_time(self, entries: dict[date, StudyTimeEntry]) -> bool:
        return self._set(
            STUDY_TIME_KEY,
            {d.isoformat(): e.model_dump(mode="json") for d, e in sorted(entries.items())},
        )

    # ── study streak ──────────────────────────────────────────────────────

    def streak(self) -> StudyStreak:
        streak = _parse(StudyStreak, self._get(STREAK_KEY, {}), STREAK_KEY)
        return streak or StudyStreak()

    def record_study_day(self, study_date: date) -> StudyStreak:
        """Count *study_date* towards the streak; a missed day restarts it at 1."""
        streak = self.streak()
        last = streak.last_study_date
        if last is not None and last >= study_date:
            return streak
        if last == study_date - timedelta(days=1):
            current = streak.current + 1
        else:
            current = 1
        streak = StudyStreak(current=current, last_study_date=study_date)
        self._set(STREAK_KEY, streak.model_dump(mode="json"))
        return streak

    # ── whole dataset ─────────────────────────────────────────────────────

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            app_id=self.app_id,
            user_name=self.user_name,
            wrong_answers=list(self.wrong_answers().values()),
            bookmarks=self.bookmarks(),
            adaptive=list(self.adaptive().values()),
            history=self.history(),
            study_time=list(self.study_time().values()),
        )

    def replace(self, snapshot: ProgressSnapshot, history_limit: int) -> None:
        """Overwrite every dataset with the contents of *snapshot*."""
        self.save_wrong_answers({r.question_id: r for r in snapshot.wrong_answers})
        self.save_bookmarks(snapshot.bookmarks)
        self.save_adaptive({s.question_id: s for s in snapshot.adaptive})
        history = sorted(snapshot.history, key=lambda h: h.completed_at)
        self.save_history(history[-history_limit:] if history_limit > 0 else history)
        self.save_study_time({e.study_date: e for e in snapshot.study_time})

    def is_empty(self) -> bool:
        snap = self.snapshot()
        return not (
            snap.wrong_answers or snap.bookmarks or snap.adaptive or snap.history or snap.study_time
        )
