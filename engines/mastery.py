"""Mastery, streak and learning-velocity updates after an attempt."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Sequence

from engines.validation import validate_difficulty, validate_mastery, validate_score

if TYPE_CHECKING:
    from session_state import AttemptRecord, SessionState

_LOGGER = logging.getLogger(__name__)

CORRECT_THRESHOLD = 0.7

DIFFICULTY_MULTIPLIERS: Mapping[str, float] = {
    "easy": 0.7,
    "medium": 1.0,
    "hard": 1.4,
}


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def learning_velocity(attempts: Sequence["AttemptRecord"]) -> float:
    """Attempts per hour between the first and last attempt.

    Returns 0.0 for fewer than two attempts or when no time has elapsed.
    """

    if len(attempts) < 2:
        return 0.0
    timestamps = sorted(record.timestamp for record in attempts)
    elapsed_hours = (timestamps[-1] - timestamps[0]).total_seconds() / 3600.0
    if elapsed_hours <= 0:
        return 0.0
    return len(attempts) / elapsed_hours


@dataclass(frozen=True)
class MasteryUpdate:
    topic: str
    mastery_before: float
    mastery_after: float
    increment: float
    streak_before: int
    streak_after: int
    velocity: float
    correct: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "mastery_before": self.mastery_before,
            "mastery_after": self.mastery_after,
            "increment": self.increment,
            "streak_before": self.streak_before,
            "streak_after": self.streak_after,
            "velocity": self.velocity,
            "correct": self.correct,
        }


class MasteryUpdateEngine:
    """Apply the mastery update rule.

    ``increment = base_increment(score) * learning_rate(mastery) * multiplier(difficulty)``
    and the new mastery is clamped to [0, 1]. Learning rates shrink as
    mastery grows; partial credit in the 0.3-0.5 band leaves mastery
    unchanged. Streaks grow on correct answers and reset to zero otherwise.
    """

    def __init__(
        self,
        correct_threshold: float = CORRECT_THRESHOLD,
        difficulty_multipliers: Optional[Mapping[str, float]] = None,
    ) -> None:
        if not 0.0 < correct_threshold <= 1.0:
            raise ValueError("correct_threshold must be in (0, 1]")
        multipliers = dict(difficulty_multipliers or DIFFICULTY_MULTIPLIERS)
        missing = set(DIFFICULTY_MULTIPLIERS) - set(multipliers)
        if missing:
            raise ValueError(f"difficulty_multipliers missing tiers: {sorted(missing)}")
        self.correct_threshold = float(correct_threshold)
        self.difficulty_multipliers = multipliers

    @staticmethod
    def learning_rate(mastery: float) -> float:
        if mastery < 0.3:
            return 0.8
        if mastery < 0.6:
            return 0.6
        return 0.4

    @staticmethod
    def base_increment(score: float) -> float:
        if score >= 0.9:
            return 0.15
        if score >= 0.7:
            return 0.10
        if score >= 0.5:
            return 0.05
        if score >= 0.3:
            return 0.0
        return -0.08

    def increment(self, previous_mastery: float, score: float, difficulty: str) -> float:
        tier = validate_difficulty(difficulty)
        return (
            self.base_increment(score)
            * self.learning_rate(previous_mastery)
            * self.difficulty_multipliers[tier]
        )

    def update_mastery(self, previous_mastery: float, score: float, difficulty: str) -> float:
        previous = validate_mastery(previous_mastery)
        score = validate_score(score)
        return clamp(previous + self.increment(previous, score, difficulty))

    def is_correct(self, score: float) -> bool:
        return score >= self.correct_threshold

    def update_streak(self, previous_streak: int, score: float) -> int:
        if self.is_correct(validate_score(score)):
            return max(0, int(previous_streak)) + 1
        return 0

    def apply_attempt(self, session: "SessionState", record: "AttemptRecord") -> MasteryUpdate:
        """Record ``record`` on ``session`` and update its statistics.

        Reads and writes happen under the session lock so concurrent
        attempts on the same session are serialised.
        """

        record = record.validated()
        with session.lock:
            mastery_before = session.current_mastery(record.topic)
            streak_before = session.streak(record.topic)
            mastery_after = self.update_mastery(mastery_before, record.score, record.difficulty)
            streak_after = self.update_streak(streak_before, record.score)
            velocity = learning_velocity(session.history(record.topic) + [record])
            session.record_attempt(
                record,
                mastery=mastery_after,
                streak=streak_after,
                velocity=velocity,
            )

        update = MasteryUpdate(
            topic=record.topic,
            mastery_before=mastery_before,
            mastery_after=mastery_after,
            increment=mastery_after - mastery_before,
            streak_before=streak_before,
            streak_after=streak_after,
            velocity=velocity,
            correct=self.is_correct(record.score),
        )
        _LOGGER.debug(
            "mastery update session=%s topic=%s %.3f -> %.3f streak=%d",
            session.session_id,
            record.topic,
            mastery_before,
            mastery_after,
            streak_after,
        )
        return update
