"""Difficulty tier selection from recent performance."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence

Difficulty = Literal["easy", "medium", "hard"]


@dataclass(frozen=True)
class DifficultyDecision:
    topic: str
    difficulty: Difficulty
    theta: float
    window: List[float] = field(default_factory=list)
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "difficulty": self.difficulty,
            "theta": self.theta,
            "window": list(self.window),
            "reason": self.reason,
        }


class DifficultySelector:
    """Map the mean of the last ``window_size`` scores to a difficulty tier.

    Standing mastery is accepted for interface symmetry but does not enter the
    decision; recent scores do, so a learner who slips on hard problems is
    moved back down quickly.
    """

    def __init__(
        self,
        window_size: int = 5,
        prior: float = 0.5,
        easy_below: float = 0.3,
        medium_below: float = 0.6,
    ) -> None:
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        if not 0.0 <= prior <= 1.0:
            raise ValueError("prior must be in [0, 1]")
        if not 0.0 < easy_below < medium_below <= 1.0:
            raise ValueError("thresholds must satisfy 0 < easy_below < medium_below <= 1")
        self.window_size = int(window_size)
        self.prior = float(prior)
        self.easy_below = float(easy_below)
        self.medium_below = float(medium_below)

    def select_difficulty(
        self,
        topic: str,
        mastery: Optional[float],
        recent_scores: Sequence[float],
    ) -> Difficulty:
        return self.decide(topic, mastery, recent_scores).difficulty

    def decide(
        self,
        topic: str,
        mastery: Optional[float],
        recent_scores: Sequence[float],
    ) -> DifficultyDecision:
        window = [float(score) for score in list(recent_scores)[-self.window_size:]]
        theta = sum(window) / len(window) if window else self.prior

        difficulty: Difficulty
        if theta < self.easy_below:
            difficulty = "easy"
        elif theta < self.medium_below:
            difficulty = "medium"
        else:
            difficulty = "hard"

        return DifficultyDecision(
            topic=topic,
            difficulty=difficulty,
            theta=theta,
            window=window,
            reason=self._generate_reason(difficulty, theta, len(window)),
        )

    def _generate_reason(self, difficulty: Difficulty, theta: float, attempts: int) -> str:
        if attempts == 0:
            return "No recent attempts on this topic; starting at the neutral prior"
        if difficulty == "hard":
            return f"Strong recent performance (mean {theta:.2f} over {attempts} attempts)"
        if difficulty == "easy":
            return f"Recent answers were mostly incorrect (mean {theta:.2f} over {attempts} attempts)"
        return f"Performance within optimal challenge range (mean {theta:.2f} over {attempts} attempts)"
