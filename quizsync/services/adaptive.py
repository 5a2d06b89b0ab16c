"""Adaptive learning: mastery detection and question prioritisation.

Per-question state machine
--------------------------
    unseen ──answer──▶ learning ──N consecutive correct──▶ mastered
                          ▲                                   │
                          └──────────── any wrong ────────────┘

* correct: ``consecutive_correct``, ``total_correct`` and ``total_attempts``
  go up by one; reaching the mastery threshold stamps ``mastered_at``.
* wrong: ``consecutive_correct`` drops to 0 and ``mastered_at`` is cleared.

Priority
--------
``base + wrong_weight (active counter) + recent_boost (wrong within the
recent window)``. A question mastered less than ``cooldown_days`` ago is
suppressed: score 0 and not eligible for selection.

Everything that decides state is a pure function of stored records plus
``now`` so it can be unit-tested without a store.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from quizsync.config import Settings
from quizsync.schemas.progress import (
    AdaptiveState,
    MasteryStatus,
    QuestionPriority,
    WrongAnswerRecord,
)
from quizsync.services.progress_store import ProgressStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AdaptiveConfig:
    mastery_threshold: int = 3
    cooldown_days: int = 7
    recent_wrong_days: int = 3
    base_weight: float = 1.0
    wrong_weight: float = 3.0
    recent_wrong_boost: float = 2.0

    @classmethod
    def from_settings(cls, s: Settings) -> "AdaptiveConfig":
        return cls(
            mastery_threshold=s.MASTERY_THRESHOLD,
            cooldown_days=s.MASTERY_COOLDOWN_DAYS,
            recent_wrong_days=s.RECENT_WRONG_DAYS,
            base_weight=s.PRIORITY_BASE_WEIGHT,
            wrong_weight=s.WRONG_PRIORITY_WEIGHT,
            recent_wrong_boost=s.RECENT_WRONG_BOOST,
        )


DEFAULT_CONFIG = AdaptiveConfig()


# ── transitions ───────────────────────────────────────────────────────────────


def apply_answer(
    state: AdaptiveState | None,
    question_id: int,
    is_correct: bool,
    now: datetime,
    config: AdaptiveConfig = DEFAULT_CONFIG,
) -> AdaptiveState:
    """Return the state after one answer. *state* is not modified."""
    current = state or AdaptiveState(question_id=question_id)
    attempts = current.total_attempts + 1

    if not is_correct:
        return current.model_copy(
            update={
                "consecutive_correct": 0,
                "total_attempts": attempts,
                "last_answered_at": now,
                "mastered_at": None,
            }
        )

    streak = current.consecutive_correct + 1
    mastered_at = current.mastered_at
    # Keep the original stamp while the streak continues past the threshold.
    if streak >= config.mastery_threshold and (
        streak == config.mastery_threshold or mastered_at is None
    ):
        mastered_at = now
    return current.model_copy(
        update={
            "consecutive_correct": streak,
            "total_correct": current.total_correct + 1,
            "total_attempts": attempts,
            "last_answered_at": now,
            "mastered_at": mastered_at,
        }
    )


def apply_wrong(
    record: WrongAnswerRecord | None, question_id: int, now: datetime
) -> WrongAnswerRecord:
    """Wrong answer: create the counter or bump it by one."""
    if record is None:
        return WrongAnswerRecord(question_id=question_id, wrong_count=1, last_wrong_at=now)
    return record.model_copy(update={"wrong_count": record.wrong_count + 1, "last_wrong_at": now})


def apply_correct(record: WrongAnswerRecord | None, now: datetime) -> WrongAnswerRecord | None:
    """Correct answer: decrement the counter; ``None`` means the record must go."""
    if record is None or record.wrong_count <= 1:
        return None
    return record.model_copy(
        update={"wrong_count": record.wrong_count - 1, "last_correct_at": now}
    )


def merge_adaptive_state(ours: AdaptiveState, theirs: AdaptiveState | None) -> AdaptiveState:
    """Combine two copies of one question's state.

    Totals only ever grow, so the larger count wins. The streak and mastery
    stamp come from whichever copy was answered last; *ours* wins a tie.
    """
    if theirs is None:
        return ours
    newest = ours
    if theirs.last_answered_at is not None and (
        ours.last_answered_at is None
        or _aware(theirs.last_answered_at) > _aware(ours.last_answered_at)
    ):
        newest = theirs
    return newest.model_copy(
        update={
            "question_id": ours.question_id,
            "total_correct": max(ours.total_correct, theirs.total_correct),
            "total_attempts": max(ours.total_attempts, theirs.total_attempts),
        }
    )


# ── scoring ───────────────────────────────────────────────────────────────────


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def is_in_cooldown(
    state: AdaptiveState | None, now: datetime, config: AdaptiveConfig = DEFAULT_CONFIG
) -> bool:
    if state is None or state.mastered_at is None:
        return False
    return _aware(now) < _aware(state.mastered_at) + timedelta(days=config.cooldown_days)


def priority_score(
    question_id: int,
    wrong: WrongAnswerRecord | None,
    state: AdaptiveState | None,
    now: datetime,
    config: AdaptiveConfig = DEFAULT_CONFIG,
) -> QuestionPriority:
    status = state.status if state is not None else MasteryStatus.UNSEEN
    if is_in_cooldown(state, now, config):
        return QuestionPriority(question_id=question_id, score=0.0, eligible=False, status=status)

    score = config.base_weight
    if wrong is not None and wrong.wrong_count > 0:
        score += config.wrong_weight
        if wrong.last_wrong_at is not None:
            age = _aware(now) - _aware(wrong.last_wrong_at)
            if age <= timedelta(days=config.recent_wrong_days):
                score += config.recent_wrong_boost
    return QuestionPriority(question_id=question_id, score=score, eligible=True, status=status)


def rank_questions(
    question_ids: Iterable[int],
    wrong_answers: dict[int, WrongAnswerRecord],
    adaptive: dict[int, AdaptiveState],
    now: datetime,
    config: AdaptiveConfig = DEFAULT_CONFIG,
    rng: random.Random | None = None,
) -> list[QuestionPriority]:
    """Eligible questions by descending score (random among equals), then suppressed ones."""
    rng = rng or random.Random()
    scored = [
        (priority_score(qid, wrong_answers.get(qid), adaptive.get(qid), now, config), rng.random())
        for qid in question_ids
    ]
    scored.sort(key=lambda pair: (not pair[0].eligible, -pair[0].score, pair[1]))
    return [p for p, _ in scored]


def select_questions(
    question_ids: Iterable[int],
    count: int,
    wrong_answers: dict[int, WrongAnswerRecord],
    adaptive: dict[int, AdaptiveState],
    now: datetime,
    config: AdaptiveConfig = DEFAULT_CONFIG,
    rng: random.Random | None = None,
) -> list[int]:
    """Pick *count* questions, preferring high priority; result order is shuffled.

    Suppressed questions are only used when there are not enough eligible ones.
    """
    rng = rng or random.Random()
    ranked = rank_questions(question_ids, wrong_answers, adaptive, now, config, rng)
    chosen = [p.question_id for p in ranked[: max(count, 0)]]
    rng.shuffle(chosen)
    return chosen


# ── engine bound to a store ───────────────────────────────────────────────────


class AdaptiveLearningEngine:
    """Applies answers to the locally stored adaptive state of one user + app."""

    def __init__(
        self,
        progress: ProgressStore,
        config: AdaptiveConfig = DEFAULT_CONFIG,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self.progress = progress
        self.config = config
        self.clock = clock
        self.rng = rng or random.Random()

    def on_answer(self, question_id: int, is_correct: bool) -> AdaptiveState:
        """Apply one answer; a failed save is counted on ``progress.failed_writes``."""
        before = self.progress.get_adaptive(question_id)
        after = apply_answer(before, question_id, is_correct, self.clock(), self.config)
        if not self.progress.put_adaptive(after):
            return after
        if after.status != (before.status if before else MasteryStatus.UNSEEN):
            logger.info(
                "Question %s/%s: %s → %s",
                self.progress.app_id,
                question_id,
                before.status.value if before else MasteryStatus.UNSEEN.value,
                after.status.value,
            )
        return after

    def state(self, question_id: int) -> AdaptiveState:
        return self.progress.get_adaptive(question_id) or AdaptiveState(question_id=question_id)

    def priorities(self, question_ids: Iterable[int]) -> list[QuestionPriority]:
        wrong = self.progress.wrong_answers()
        adaptive = self.progress.adaptive()
        now = self.clock()
        return [
            priority_score(qid, wrong.get(qid), adaptive.get(qid), now, self.config)
            for qid in question_ids
        ]

    def select(self, question_ids: Iterable[int], count: int) -> list[int]:
        return select_questions(
            question_ids,
            count,
            self.progress.wrong_answers(),
            self.progress.adaptive(),
            self.clock(),
            self.config,
            self.rng,
        )
