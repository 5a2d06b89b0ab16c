"""HTTP client for the hosted progress database (PostgREST / Supabase REST).

Every call returns a :class:`RemoteResult` instead of raising, so callers can
tell "the service is down" (``UNAVAILABLE``) apart from "there is no such
row" (success with ``data=None``) and from rejected writes.

Counter updates are read → compute → write; the server is not assumed to
increment atomically, so callers must serialise writes per
``(user_name, app_id, question_id)``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

import httpx

from quizsync.config import Settings
from quizsync.schemas.progress import (
    AdaptiveState,
    OverallStats,
    QuizResult,
    StudyTimeEntry,
    WrongAnswerRecord,
)
from quizsync.services.adaptive import (
    DEFAULT_CONFIG,
    AdaptiveConfig,
    apply_answer,
    apply_correct,
    apply_wrong,
    merge_adaptive_state,
)
from quizsync.services.progress_store import score_rate

logger = logging.getLogger(__name__)

USERS = "users"
QUIZ_RESULTS = "quiz_results"
WRONG_ANSWERS = "wrong_answers"
BOOKMARKS = "bookmarks"
ADAPTIVE_LEARNING = "adaptive_learning"
STUDY_TIME = "study_time"

QUESTION_KEY = ("user_name", "app_id", "question_id")
STUDY_DATE_KEY = ("user_name", "app_id", "study_date")
RESULT_KEY = ("user_name", "app_id", "completed_at")

_UNIQUE_VIOLATION = "23505"


class RemoteErrorKind(str, enum.Enum):
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RemoteError:
    kind: RemoteErrorKind
    message: str
    status_code: int | None = None


@dataclass(frozen=True)
class RemoteResult:
    data: Any = None
    error: RemoteError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _merge_study_time(ours: StudyTimeEntry, theirs: StudyTimeEntry | None) -> StudyTimeEntry:
    if theirs is None:
        return ours
    return ours.model_copy(
        update={
            "duration_seconds": max(ours.duration_seconds, theirs.duration_seconds),
            "questions_answered": max(ours.questions_answered, theirs.questions_answered),
        }
    )


def _classify(response: httpx.Response) -> RemoteError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    code = body.get("code") if isinstance(body, dict) else None
    message = (body.get("message") if isinstance(body, dict) else None) or response.text
    status = response.status_code
    if status >= 500:
        kind = RemoteErrorKind.UNAVAILABLE
    elif status == 409 or code == _UNIQUE_VIOLATION:
        kind = RemoteErrorKind.CONFLICT
    elif status == 404:
        kind = RemoteErrorKind.NOT_FOUND
    elif 400 <= status < 500:
        kind = RemoteErrorKind.VALIDATION
    else:
        kind = RemoteErrorKind.UNKNOWN
    return RemoteError(kind=kind, message=message or f"HTTP {status}", status_code=status)


def _eq(**filters: Any) -> dict[str, str]:
    return {k: f"eq.{v}" for k, v in filters.items()}


class RemoteStoreClient:
    """Thin per-table wrapper around the PostgREST HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        adaptive_config: AdaptiveConfig = DEFAULT_CONFIG,
    ) -> None:
        self._base = base_url.rstrip("/")
        self.adaptive_config = adaptive_config
        self._http: httpx.Client | None = None
        if self._base and api_key:
            self._http = httpx.Client(
                base_url=f"{self._base}/rest/v1",
                timeout=timeout,
                transport=transport,
                headers={
                    "apikey": api_key,
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
            )

    @classmethod
    def from_settings(cls, s: Settings, **kwargs: Any) -> "RemoteStoreClient":
        return cls(s.REMOTE_URL, s.REMOTE_API_KEY, timeout=s.REMOTE_TIMEOUT_SECONDS, **kwargs)

    @property
    def configured(self) -> bool:
        return self._http is not None

    # ── transport ─────────────────────────────────────────────────────────

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> RemoteResult:
        if self._http is None:
            return RemoteResult(
                error=RemoteError(RemoteErrorKind.UNAVAILABLE, "remote store not configured")
            )
        headers = {"Prefer": prefer} if prefer else None
        try:
            r = self._http.request(method, f"/{table}", params=params, json=json, headers=headers)
        except httpx.TransportError as exc:
            logger.warning("Remote %s %s unreachable (non-fatal): %s", method, table, exc)
            return RemoteResult(error=RemoteError(RemoteErrorKind.UNAVAILABLE, str(exc)))

        if r.is_success:
            return RemoteResult(data=r.json() if r.content else [])
        error = _classify(r)
        log = logger.debug if error.kind == RemoteErrorKind.CONFLICT else logger.warning
        log("Remote %s %s failed: %s (%s)", method, table, error.kind.value, error.message)
        return RemoteResult(error=error)

    def _select(self, table: str, filters: dict[str, Any], **extra: Any) -> RemoteResult:
        return self._request("GET", table, params={"select": "*", **_eq(**filters), **extra})

    def _select_one(self, table: str, filters: dict[str, Any]) -> RemoteResult:
        res = self._select(table, filters, limit=1)
        if not res.ok:
            return res
        return RemoteResult(data=res.data[0] if res.data else None)

    def _insert(self, table: str, row: dict[str, Any] | list[dict[str, Any]]) -> RemoteResult:
        return self._request("POST", table, json=row, prefer="return=representation")

    def _update(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> RemoteResult:
        return self._request(
            "PATCH", table, params=_eq(**filters), json=values, prefer="return=representation"
        )

    def _delete(self, table: str, filters: dict[str, Any]) -> RemoteResult:
        return self._request("DELETE", table, params=_eq(**filters))

    def _upsert(
        self,
        table: str,
        rows: list[dict[str, Any]],
        on_conflict: tuple[str, ...],
        *,
        ignore_duplicates: bool = False,
    ) -> RemoteResult:
        if not rows:
            return RemoteResult(data=[])
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        return self._request(
            "POST",
            table,
            params={"on_conflict": ",".join(on_conflict)},
            json=rows,
            prefer=f"resolution={resolution},return=representation",
        )

    def _insert_or_update(
        self, table: str, row: dict[str, Any], key: tuple[str, ...]
    ) -> RemoteResult:
        """Insert *row*; on a unique-key conflict update the existing row in place."""
        res = self._insert(table, row)
        if res.error is not None and res.error.kind == RemoteErrorKind.CONFLICT:
            filters = {k: row[k] for k in key}
            values = {k: v for k, v in row.items() if k not in key}
            res = self._update(table, filters, values)
        if not res.ok:
            return res
        return RemoteResult(data=res.data[0] if res.data else row)

    # ── health ────────────────────────────────────────────────────────────

    def healthy(self) -> bool:
        return self._request("GET", USERS, params={"select": "user_name", "limit": 1}).ok

    # ── users ─────────────────────────────────────────────────────────────

    def create_user(self, user_name: str, *, is_admin: bool = False) -> RemoteResult:
        """Insert a user row; a taken name comes back as ``CONFLICT``."""
        res = self._insert(USERS, {"user_name": user_name, "is_admin": is_admin})
        if not res.ok:
            return res
        return RemoteResult(data=res.data[0] if res.data else None)

    def get_user(self, user_name: str) -> RemoteResult:
        return self._select_one(USERS, {"user_name": user_name})

    def delete_user(self, user_name: str) -> RemoteResult:
        """Delete the user; owned rows go with it through the backend's FK cascade."""
        return self._delete(USERS, {"user_name": user_name})

    # ── quiz results ──────────────────────────────────────────────────────

    @staticmethod
    def _result_row(user_name: str, result: QuizResult) -> dict[str, Any]:
        return {"user_name": user_name, **result.model_dump(mode="json")}

    def insert_quiz_result(self, user_name: str, result: QuizResult) -> RemoteResult:
        res = self._insert(QUIZ_RESULTS, self._result_row(user_name, result))
        if res.error is not None and res.error.kind == RemoteErrorKind.CONFLICT:
            # Results are immutable: the row is already there.
            return RemoteResult(data=None)
        return res

    def upsert_quiz_results(
        self, user_name: str, results: list[QuizResult]
    ) -> RemoteResult:
        rows = [self._result_row(user_name, r) for r in results]
        return self._upsert(QUIZ_RESULTS, rows, RESULT_KEY, ignore_duplicates=True)

    def list_quiz_results(self, user_name: str, app_id: str, limit: int = 10) -> RemoteResult:
        res = self._select(
            QUIZ_RESULTS,
            {"user_name": user_name, "app_id": app_id},
            order="completed_at.desc",
            limit=limit,
        )
        if not res.ok:
            return res
        return RemoteResult(data=[QuizResult.model_validate(row) for row in res.data])

    def get_overall_stats(self, user_name: str, app_id: str | None = None) -> RemoteResult:
        filters: dict[str, Any] = {"user_name": user_name}
        if app_id:
            filters["app_id"] = app_id
        res = self._select(QUIZ_RESULTS, filters)
        if not res.ok:
            return res
        total_questions = sum(row.get("total_questions") or 0 for row in res.data)
        total_correct = sum(row.get("correct_count") or 0 for row in res.data)
        return RemoteResult(
            data=OverallStats(
                total_quizzes=len(res.data),
                total_questions=total_questions,
                total_correct=total_correct,
                overall_rate=score_rate(total_correct, total_questions, digits=1),
            )
        )

    # ── wrong answers ─────────────────────────────────────────────────────

    @staticmethod
    def _wrong_row(user_name: str, app_id: str, record: WrongAnswerRecord) -> dict[str, Any]:
        return {"user_name": user_name, "app_id": app_id, **record.model_dump(mode="json")}

    def _get_wrong(self, user_name: str, app_id: str, question_id: int) -> RemoteResult:
        res = self._select_one(
            WRONG_ANSWERS, {"user_name": user_name, "app_id": app_id, "question_id": question_id}
        )
        if not res.ok or res.data is None:
            return res
        return RemoteResult(data=WrongAnswerRecord.model_validate(res.data))

    def record_wrong_answer(
        self, user_name: str, app_id: str, question_id: int, now: datetime
    ) -> RemoteResult:
        current = self._get_wrong(user_name, app_id, question_id)
        if not current.ok:
            return current
        record = apply_wrong(current.data, question_id, now)
        return self._insert_or_update(
            WRONG_ANSWERS, self._wrong_row(user_name, app_id, record), QUESTION_KEY
        )

    def record_correct_answer(
        self, user_name: str, app_id: str, question_id: int, now: datetime
    ) -> RemoteResult:
        current = self._get_wrong(user_name, app_id, question_id)
        if not current.ok or current.data is None:
            return current
        record = apply_correct(current.data, now)
        if record is None:
            res = self._delete(
                WRONG_ANSWERS,
                {"user_name": user_name, "app_id": app_id, "question_id": question_id},
            )
            return res if not res.ok else RemoteResult(data=None)
        return self._insert_or_update(
            WRONG_ANSWERS, self._wrong_row(user_name, app_id, record), QUESTION_KEY
        )

    def upsert_wrong_answers(
        self, user_name: str, app_id: str, records: list[WrongAnswerRecord]
    ) -> RemoteResult:
        rows = [self._wrong_row(user_name, app_id, r) for r in records if r.wrong_count > 0]
        return self._upsert(WRONG_ANSWERS, rows, QUESTION_KEY)

    def list_wrong_answers(self, user_name: str, app_id: str) -> RemoteResult:
        res = self._select(WRONG_ANSWERS, {"user_name": user_name, "app_id": app_id})
        if not res.ok:
            return res
        return RemoteResult(data=[WrongAnswerRecord.model_validate(row) for row in res.data])

    def clear_wrong_answers(self, user_name: str, app_id: str) -> RemoteResult:
        return self._delete(WRONG_ANSWERS, {"user_name": user_name, "app_id": app_id})

    # ── bookmarks ─────────────────────────────────────────────────────────

    def add_bookmark(self, user_name: str, app_id: str, question_id: int) -> RemoteResult:
        row = {"user_name": user_name, "app_id": app_id, "question_id": question_id}
        res = self._insert(BOOKMARKS, row)
        if res.error is not None and res.error.kind == RemoteErrorKind.CONFLICT:
            return RemoteResult(data=row)
        return res

    def remove_bookmark(self, user_name: str, app_id: str, question_id: int) -> RemoteResult:
        return self._delete(
            BOOKMARKS, {"user_name": user_name, "app_id": app_id, "question_id": question_id}
        )

    def upsert_bookmarks(
        self, user_name: str, app_id: str, question_ids: list[int]
    ) -> RemoteResult:
        rows = [
            {"user_name": user_name, "app_id": app_id, "question_id": qid}
            for qid in sorted(set(question_ids))
        ]
        return self._upsert(BOOKMARKS, rows, QUESTION_KEY, ignore_duplicates=True)

    def list_bookmarks(self, user_name: str, app_id: str) -> RemoteResult:
        res = self._select(BOOKMARKS, {"user_name": user_name, "app_id": app_id})
        if not res.ok:
            return res
        return RemoteResult(data=sorted(row["question_id"] for row in res.data))

    # ── adaptive learning ─────────────────────────────────────────────────

    @staticmethod
    def _adaptive_row(user_name: str, app_id: str, state: AdaptiveState) -> dict[str, Any]:
        return {"user_name": user_name, "app_id": app_id, **state.model_dump(mode="json")}

    def update_adaptive_learning(
        self,
        user_name: str,
        app_id: str,
        question_id: int,
        is_correct: bool,
        now: datetime,
    ) -> RemoteResult:
        current = self._select_one(
            ADAPTIVE_LEARNING,
            {"user_name": user_name, "app_id": app_id, "question_id": question_id},
        )
        if not current.ok:
            return current
        before = AdaptiveState.model_validate(current.data) if current.data else None
        after = apply_answer(before, question_id, is_correct, now, self.adaptive_config)
        return self._insert_or_update(
            ADAPTIVE_LEARNING, self._adaptive_row(user_name, app_id, after), QUESTION_KEY
        )

    def upsert_adaptive_learning(
        self, user_name: str, app_id: str, states: list[AdaptiveState]
    ) -> RemoteResult:
        """Write *states*, merged with what the remote already holds."""
        existing = self.list_adaptive_learning(user_name, app_id)
        if not existing.ok:
            return existing
        remote = {s.question_id: s for s in existing.data}
        rows = [
            self._adaptive_row(user_name, app_id, merge_adaptive_state(s, remote.get(s.question_id)))
            for s in states
        ]
        return self._upsert(ADAPTIVE_LEARNING, rows, QUESTION_KEY)

    def list_adaptive_learning(self, user_name: str, app_id: str) -> RemoteResult:
        res = self._select(ADAPTIVE_LEARNING, {"user_name": user_name, "app_id": app_id})
        if not res.ok:
            return res
        return RemoteResult(data=[AdaptiveState.model_validate(row) for row in res.data])

    # ── study time ────────────────────────────────────────────────────────

    @staticmethod
    def _study_row(user_name: str, app_id: str, entry: StudyTimeEntry) -> dict[str, Any]:
        return {"user_name": user_name, "app_id": app_id, **entry.model_dump(mode="json")}

    def record_study_time(
        self,
        user_name: str,
        app_id: str,
        study_date: date,
        duration_seconds: int,
        questions_answered: int,
    ) -> RemoteResult:
        current = self._select_one(
            STUDY_TIME,
            {"user_name": user_name, "app_id": app_id, "study_date": study_date.isoformat()},
        )
        if not current.ok:
            return current
        entry = (
            StudyTimeEntry.model_validate(current.data)
            if current.data
            else StudyTimeEntry(study_date=study_date)
        )
        entry = entry.model_copy(
            update={
                "duration_seconds": entry.duration_seconds + duration_seconds,
                "questions_answered": entry.questions_answered + questions_answered,
            }
        )
        return self._insert_or_update(
            STUDY_TIME, self._study_row(user_name, app_id, entry), STUDY_DATE_KEY
        )

    def upsert_study_time(
        self, user_name: str, app_id: str, entries: list[StudyTimeEntry]
    ) -> RemoteResult:
        """Write *entries*; a day's remote totals are never lowered."""
        existing = self._select(STUDY_TIME, {"user_name": user_name, "app_id": app_id})
        if not existing.ok:
            return existing
        remote = {}
        for row in existing.data:
            entry = StudyTimeEntry.model_validate(row)
            remote[entry.study_date] = entry
        rows = [
            self._study_row(user_name, app_id, _merge_study_time(e, remote.get(e.study_date)))
            for e in entries
        ]
        return self._upsert(STUDY_TIME, rows, STUDY_DATE_KEY)

    def list_study_time(
        self,
        user_name: str,
        app_id: str | None = None,
        *,
        days: int = 84,
        today: date | None = None,
    ) -> RemoteResult:
        start = (today or date.today()) - timedelta(days=days)
        filters: dict[str, Any] = {"user_name": user_name}
        if app_id:
            filters["app_id"] = app_id
        res = self._request(
            "GET",
            STUDY_TIME,
            params={
                "select": "*",
                **_eq(**filters),
                "study_date": f"gte.{start.isoformat()}",
                "order": "study_date.desc",
            },
        )
        if not res.ok:
            return res
        return RemoteResult(data=[StudyTimeEntry.model_validate(row) for row in res.data])

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
