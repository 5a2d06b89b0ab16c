"""Tests for offline-first event recording and bulk snapshot transfer."""

import copy
from datetime import date, timedelta
from unittest.mock import patch

import httpx
import pytest

from quizsync.config import Settings
from quizsync.context import QuizSyncContext
from quizsync.db.models import LocalUser
from quizsync.db.session import create_session_factory
from quizsync.errors import InvalidAppError, InvalidEventError
from quizsync.schemas.progress import AdaptiveState, MasteryStatus
from quizsync.services.local_store import LocalStore


def _login(context: QuizSyncContext, name: str = "Tanaka") -> None:
    context.register_user(name)
    context.select_user(name)


def _login_offline(context: QuizSyncContext, name: str = "Tanaka") -> None:
    """Cloud registration needs the remote, so seed the local registry directly."""
    with create_session_factory(context.engine)() as db:
        db.add(LocalUser(name=name))
        db.commit()
    context.select_user(name)


def _answer(context: QuizSyncContext, qid: int, correct: bool, app_id: str = "fp3"):
    return context.record_event(app_id, "answer", {"question_id": qid, "is_correct": correct})


# ── local mode ────────────────────────────────────────────────────────────


def test_question_five_scenario(ctx: QuizSyncContext, clock):
    _login(ctx)
    for _ in range(3):
        _answer(ctx, 5, False)
        clock.advance(minutes=1)
    outcome = _answer(ctx, 5, True)

    progress = ctx.sync.progress("fp3")
    assert progress.get_wrong(5).wrong_count == 2
    assert outcome.state["status"] == MasteryStatus.LEARNING.value

    clock.advance(minutes=1)
    _answer(ctx, 5, True)
    clock.advance(minutes=1)
    third = clock.now
    outcome = _answer(ctx, 5, True)

    assert progress.get_wrong(5) is None
    state = progress.get_adaptive(5)
    assert state.status == MasteryStatus.MASTERED
    assert state.mastered_at == third
    assert outcome.state["wrong_answer"] is None


@pytest.mark.parametrize(
    "answers",
    [
        [True, True, False, True, True, True],
        [False, True, True, False, False, True],
        [True] * 5,
        [False] * 4 + [True] * 6,
    ],
)
def test_wrong_counter_never_negative(ctx: QuizSyncContext, answers):
    _login(ctx)
    expected = 0
    for correct in answers:
        _answer(ctx, 7, correct)
        expected = max(expected - 1, 0) if correct else expected + 1
        record = ctx.sync.progress("fp3").get_wrong(7)
        if expected == 0:
            assert record is None
        else:
            assert record.wrong_count == expected


def test_bookmark_study_time_and_history(ctx: QuizSyncContext, clock):
    _login(ctx)
    assert ctx.record_event("fp3", "bookmark_toggled", {"question_id": 3}).state["bookmarked"] is True
    assert ctx.record_event("fp3", "bookmark_toggled", {"question_id": 3}).state["bookmarked"] is False
    ctx.record_event("fp3", "bookmark_toggled", {"question_id": 8, "bookmarked": True})

    ctx.record_event("fp3", "study_time", {"duration_seconds": 300, "questions_answered": 10})
    ctx.record_event("fp3", "study_time", {"duration_seconds": 60, "questions_answered": 2})

    outcome = ctx.record_event(
        "fp3", "quiz_completed", {"mode": "random", "total_questions": 10, "correct_count": 7}
    )
    assert outcome.state["result"]["score_rate"] == 70.0
    assert outcome.state["stats"]["total_quizzes"] == 1

    snap = ctx.progress_snapshot("fp3")
    assert snap.bookmarks == [8]
    assert snap.study_time[0].duration_seconds == 360
    assert snap.study_time[0].study_date == clock.now.date()
    assert len(snap.history) == 1
    assert ctx.overall_stats("fp3").overall_rate == 70.0


def test_history_is_capped(engine, clock):
    settings = Settings(HISTORY_LIMIT=3)
    with QuizSyncContext(settings, engine=engine, clock=clock) as context:
        _login(context)
        for _ in range(5):
            context.record_event("fp3", "quiz_completed", {"total_questions": 4, "correct_count": 2})
            clock.advance(minutes=5)
        assert len(context.progress_snapshot("fp3").history) == 3
        assert context.overall_stats("fp3").total_quizzes == 5


def test_wrong_answers_cleared(ctx: QuizSyncContext):
    _login(ctx)
    _answer(ctx, 1, False)
    _answer(ctx, 2, False)
    ctx.record_event("fp3", "wrong_answers_cleared")
    assert ctx.progress_snapshot("fp3").wrong_answers == []


def test_apps_do_not_share_progress(ctx: QuizSyncContext):
    _login(ctx)
    _answer(ctx, 5, False, app_id="fp3")
    assert ctx.progress_snapshot("takken").wrong_answers == []


@pytest.mark.parametrize(
    "kind, payload",
    [
        ("unknown", {}),
        ("answer", {"question_id": 1}),
        ("quiz_completed", {"total_questions": 0, "correct_count": 0}),
        ("study_time", {"duration_seconds": -1}),
    ],
)
def test_invalid_events_are_rejected(ctx: QuizSyncContext, kind, payload):
    _login(ctx)
    with pytest.raises(InvalidEventError):
        ctx.record_event("fp3", kind, payload)


@pytest.mark.parametrize("app_id", ["", "fp3:x"])
def test_bad_app_id_is_rejected(ctx: QuizSyncContext, app_id):
    _login(ctx)
    with pytest.raises(InvalidAppError):
        _answer(ctx, 5, False, app_id=app_id)
    with pytest.raises(InvalidAppError):
        ctx.priorities(app_id, [1, 2])
    assert ctx.local.user_keys("Tanaka") == []


def test_study_streak_counts_consecutive_days(ctx: QuizSyncContext, clock):
    _login(ctx)

    def study():
        return ctx.record_event("fp3", "study_time", {"duration_seconds": 60})

    assert study().state["streak"]["current"] == 1
    assert study().state["streak"]["current"] == 1
    clock.advance(days=1)
    assert study().state["streak"]["current"] == 2
    clock.advance(days=2)
    outcome = study()
    assert outcome.state["streak"] == {
        "current": 1,
        "last_study_date": clock.now.date().isoformat(),
    }
    assert ctx.study_streak("takken").current == 0


def test_local_mode_never_queues_remote_work(ctx: QuizSyncContext):
    _login(ctx)
    outcome = _answer(ctx, 5, False)
    assert outcome.remote_queued is False
    assert ctx.queue.pending == 0


def test_selection_prefers_missed_and_skips_mastered(ctx: QuizSyncContext, clock):
    _login(ctx)
    for _ in range(3):
        _answer(ctx, 1, True)
    _answer(ctx, 2, False)

    priorities = {p.question_id: p for p in ctx.priorities("fp3", [1, 2, 3])}
    assert priorities[1].eligible is False
    assert priorities[2].score > priorities[3].score

    assert sorted(ctx.select_questions("fp3", [1, 2, 3], 2)) == [2, 3]


def test_cooldown_one_day_vs_ten_days(ctx: QuizSyncContext, clock):
    _login(ctx)
    start = clock.now
    for _ in range(3):
        ctx.on_answer("fp3", 10, True)
    clock.advance(days=9)
    for _ in range(3):
        ctx.on_answer("fp3", 20, True)
    clock.advance(days=1)

    assert clock.now - start == timedelta(days=10)
    by_id = {p.question_id: p for p in ctx.priorities("fp3", [10, 20])}
    assert by_id[10].eligible is True
    assert by_id[20].eligible is False
    assert by_id[20].score == 0


# ── cloud mode ────────────────────────────────────────────────────────────


def test_events_are_mirrored_remotely(cloud_ctx: QuizSyncContext, remote_db, clock):
    _login(cloud_ctx)
    for correct in (False, False, True):
        outcome = _answer(cloud_ctx, 5, correct)
        assert outcome.remote_queued is True
    cloud_ctx.record_event("fp3", "bookmark_toggled", {"question_id": 5})
    cloud_ctx.record_event("fp3", "study_time", {"duration_seconds": 90, "questions_answered": 3})
    cloud_ctx.record_event("fp3", "quiz_completed", {"total_questions": 3, "correct_count": 1})
    assert cloud_ctx.flush(timeout=5)

    [wrong] = remote_db.rows("wrong_answers", user_name="Tanaka", question_id=5)
    assert wrong["wrong_count"] == 1
    [adaptive] = remote_db.rows("adaptive_learning", question_id=5)
    assert adaptive["total_attempts"] == 3
    assert remote_db.rows("bookmarks", question_id=5)
    assert remote_db.rows("study_time")[0]["duration_seconds"] == 90
    assert remote_db.rows("quiz_results")[0]["correct_count"] == 1
    assert cloud_ctx.sync.remote_failures == 0


def test_many_answers_for_one_question_do_not_lose_updates(cloud_ctx: QuizSyncContext, remote_db):
    _login(cloud_ctx)
    for _ in range(15):
        _answer(cloud_ctx, 9, False)
    assert cloud_ctx.flush(timeout=10)
    assert remote_db.rows("wrong_answers", question_id=9)[0]["wrong_count"] == 15


def test_local_first_when_remote_unreachable(offline_ctx: QuizSyncContext):
    _login_offline(offline_ctx)
    outcome = _answer(offline_ctx, 5, False)
    assert outcome.success is True
    assert outcome.remote_queued is True
    assert offline_ctx.flush(timeout=5)

    assert offline_ctx.sync.progress("fp3").get_wrong(5).wrong_count == 1
    assert offline_ctx.sync.remote_failures == 2


def test_remote_goes_down_mid_session(cloud_ctx: QuizSyncContext, remote_db):
    _login(cloud_ctx)
    remote_db.down = True
    outcome = _answer(cloud_ctx, 5, False)
    cloud_ctx.flush(timeout=5)

    assert outcome.success is True
    assert cloud_ctx.sync.progress("fp3").get_wrong(5).wrong_count == 1
    assert remote_db.rows("wrong_answers") == []


@pytest.mark.parametrize(
    "kind, payload",
    [
        ("answer", {"question_id": 5, "is_correct": False}),
        ("bookmark_toggled", {"question_id": 5}),
        ("study_time", {"duration_seconds": 60}),
        ("quiz_completed", {"total_questions": 4, "correct_count": 3}),
    ],
)
def test_failed_local_write_is_reported_and_not_mirrored(
    cloud_ctx: QuizSyncContext, remote_db, kind, payload
):
    _login(cloud_ctx)
    with patch.object(LocalStore, "_write", return_value=False):
        outcome = cloud_ctx.record_event("fp3", kind, payload)
    assert cloud_ctx.flush(timeout=5)

    assert outcome.success is False
    assert outcome.remote_queued is False
    for table in ("wrong_answers", "adaptive_learning", "bookmarks", "study_time", "quiz_results"):
        assert remote_db.rows(table) == []
    assert cloud_ctx.progress_snapshot("fp3").model_dump(exclude={"app_id", "user_name"}) == {
        "wrong_answers": [],
        "bookmarks": [],
        "adaptive": [],
        "history": [],
        "study_time": [],
    }


# ── bulk snapshot transfer ────────────────────────────────────────────────


def _seed_local_progress(context: QuizSyncContext, clock) -> None:
    for qid, correct in [(1, False), (1, False), (2, True), (3, False)]:
        _answer(context, qid, correct)
        clock.advance(minutes=1)
    context.record_event("fp3", "bookmark_toggled", {"question_id": 2})
    context.record_event("fp3", "study_time", {"duration_seconds": 120, "questions_answered": 4})
    context.record_event("fp3", "quiz_completed", {"total_questions": 4, "correct_count": 1})


def test_snapshot_upload_never_lowers_remote_totals(cloud_ctx: QuizSyncContext, remote_db, clock):
    _login(cloud_ctx)
    today = clock.now.date()
    remote_db.tables["adaptive_learning"].append(
        {
            "user_name": "Tanaka",
            "app_id": "fp3",
            "question_id": 5,
            "consecutive_correct": 0,
            "total_correct": 8,
            "total_attempts": 10,
            "last_answered_at": (clock.now - timedelta(days=2)).isoformat(),
            "mastered_at": None,
        }
    )
    remote_db.tables["study_time"].append(
        {
            "user_name": "Tanaka",
            "app_id": "fp3",
            "study_date": today.isoformat(),
            "duration_seconds": 3600,
            "questions_answered": 40,
        }
    )
    # Local-only progress, written without mirroring.
    progress = cloud_ctx.sync.progress("fp3")
    progress.put_adaptive(
        AdaptiveState(
            question_id=5,
            consecutive_correct=1,
            total_correct=1,
            total_attempts=1,
            last_answered_at=clock.now,
        )
    )
    progress.add_study_time(today, 60, 1)

    first = cloud_ctx.sync_local_snapshot_to_remote("fp3")
    after_first = copy.deepcopy(remote_db.tables)
    second = cloud_ctx.sync_local_snapshot_to_remote("fp3")

    assert first.success and second.success
    [adaptive] = remote_db.rows("adaptive_learning", question_id=5)
    assert adaptive["total_attempts"] == 10
    assert adaptive["total_correct"] == 8
    assert adaptive["consecutive_correct"] == 1
    [study] = remote_db.rows("study_time")
    assert study["duration_seconds"] == 3600
    assert study["questions_answered"] == 40
    assert remote_db.tables == after_first


def test_snapshot_upload_is_idempotent(engine, local_settings, cloud_settings, clock, remote_db):
    # Progress made while offline in local mode...
    with QuizSyncContext(local_settings, engine=engine, clock=clock) as offline:
        _login(offline)
        _seed_local_progress(offline, clock)

    # ...is pushed once the same install switches to cloud mode.
    with QuizSyncContext(
        cloud_settings, engine=engine, transport=httpx.MockTransport(remote_db), clock=clock
    ) as online:
        assert online.current_user() == "Tanaka"
        first = online.sync_local_snapshot_to_remote("fp3")
        after_first = copy.deepcopy(remote_db.tables)
        second = online.sync_local_snapshot_to_remote("fp3")

    assert first.success and second.success
    assert first.counts == {
        "wrong_answers": 2,
        "bookmarks": 1,
        "adaptive_learning": 3,
        "study_time": 1,
        "quiz_results": 1,
    }
    assert remote_db.tables == after_first
    assert remote_db.rows("users", user_name="Tanaka")
    assert remote_db.rows("wrong_answers", question_id=1)[0]["wrong_count"] == 2


def test_snapshot_upload_reports_unreachable_remote(offline_ctx: QuizSyncContext):
    _login_offline(offline_ctx)
    _answer(offline_ctx, 5, False)
    report = offline_ctx.sync_local_snapshot_to_remote("fp3")
    assert report.success is False
    assert report.errors[0]["kind"] == "unavailable"


def test_snapshot_upload_in_local_mode(ctx: QuizSyncContext):
    _login(ctx)
    report = ctx.sync_local_snapshot_to_remote("fp3")
    assert report.success is False
    assert report.errors[0]["kind"] == "unavailable"


def test_snapshot_download_replaces_local(cloud_ctx: QuizSyncContext, remote_db, clock):
    _login(cloud_ctx)
    remote_db.tables["wrong_answers"].append(
        {"user_name": "Tanaka", "app_id": "fp3", "question_id": 42, "wrong_count": 3}
    )
    remote_db.tables["bookmarks"].append({"user_name": "Tanaka", "app_id": "fp3", "question_id": 7})
    remote_db.tables["study_time"].append(
        {
            "user_name": "Tanaka",
            "app_id": "fp3",
            "study_date": (clock.now.date() - timedelta(days=1)).isoformat(),
            "duration_seconds": 600,
            "questions_answered": 20,
        }
    )
    cloud_ctx.sync.progress("fp3").set_bookmark(99, True)

    report = cloud_ctx.sync_remote_snapshot_to_local("fp3")

    assert report.success
    snap = cloud_ctx.progress_snapshot("fp3")
    assert [w.question_id for w in snap.wrong_answers] == [42]
    assert snap.bookmarks == [7]
    assert snap.study_time[0].study_date == date.fromisoformat(
        remote_db.tables["study_time"][0]["study_date"]
    )


def test_snapshot_download_keeps_local_on_failure(cloud_ctx: QuizSyncContext, remote_db):
    _login(cloud_ctx)
    cloud_ctx.sync.progress("fp3").set_bookmark(99, True)
    remote_db.down = True

    report = cloud_ctx.sync_remote_snapshot_to_local("fp3")

    assert report.success is False
    assert cloud_ctx.progress_snapshot("fp3").bookmarks == [99]
