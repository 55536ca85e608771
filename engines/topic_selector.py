"""Pick the next topic to practise."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from engines.prerequisites import PrerequisiteChecker
from engines.validation import CatalogConfigError
from topic_graph import TopicGraph

AttemptCounts = Mapping[str, Union[int, Sequence[Any]]]


@dataclass(frozen=True)
class TopicScore:
    topic: str
    score: float
    mastery: float
    attempts: int
    exploration_bonus: float
    mastery_gap_bonus: float
    prerequisites_met: bool
    missing_prerequisites: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "score": self.score,
            "mastery": self.mastery,
            "attempts": self.attempts,
            "exploration_bonus": self.exploration_bonus,
            "mastery_gap_bonus": self.mastery_gap_bonus,
            "prerequisites_met": self.prerequisites_met,
            "missing_prerequisites": list(self.missing_prerequisites),
        }


def _attempt_count(value: Union[int, Sequence[Any], None]) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return len(value)


class TopicSelector:
    """Score every catalog topic and return the highest scoring one.

    Scores add an exploration bonus for unattempted topics and a mastery-gap
    bonus that never drops to zero, so mastered topics stay selectable for
    reinforcement. Satisfied prerequisites add a bonus; unmet prerequisites
    scale the accumulated score down instead of excluding the topic.
    """

    def __init__(
        self,
        graph: TopicGraph,
        checker: Optional[PrerequisiteChecker] = None,
        exploration_bonus: float = 0.4,
        prerequisite_bonus: float = 0.3,
        blocked_penalty: float = 0.1,
    ) -> None:
        if not 0.0 <= blocked_penalty <= 1.0:
            raise ValueError("blocked_penalty must be in [0, 1]")
        self.graph = graph
        self.checker = checker or PrerequisiteChecker(graph)
        self.exploration_bonus = float(exploration_bonus)
        self.prerequisite_bonus = float(prerequisite_bonus)
        self.blocked_penalty = float(blocked_penalty)

    @staticmethod
    def mastery_gap_bonus(mastery: float) -> float:
        if mastery < 0.3:
            return 0.3
        if mastery < 0.6:
            return 0.2
        return 0.1

    def score_topic(
        self,
        topic: str,
        knowledge: Mapping[str, float],
        attempts_by_topic: AttemptCounts,
    ) -> TopicScore:
        mastery = knowledge.get(topic)
        if mastery is None:
            mastery = self.graph.default_mastery(topic)
        attempts = _attempt_count(attempts_by_topic.get(topic))

        exploration = self.exploration_bonus if attempts == 0 else 0.0
        gap = self.mastery_gap_bonus(float(mastery))
        score = exploration + gap

        check = self.checker.can_proceed(topic, knowledge)
        if check.allowed:
            score += self.prerequisite_bonus
        else:
            score *= self.blocked_penalty

        return TopicScore(
            topic=topic,
            score=score,
            mastery=float(mastery),
            attempts=attempts,
            exploration_bonus=exploration,
            mastery_gap_bonus=gap,
            prerequisites_met=check.allowed,
            missing_prerequisites=list(check.missing),
        )

    def score_topics(
        self,
        knowledge: Mapping[str, float],
        attempts_by_topic: AttemptCounts,
    ) -> List[TopicScore]:
        """Return scores for the whole catalog, best first.

        The sort is stable, so equal scores keep catalog order.
        """

        scores = [
            self.score_topic(topic, knowledge, attempts_by_topic)
            for topic in self.graph.topics()
        ]
        return sorted(scores, key=lambda entry: entry.score, reverse=True)

    def select_next_topic(
        self,
        knowledge: Mapping[str, float],
        attempts_by_topic: AttemptCounts,
    ) -> str:
        topics = self.graph.topics()
        if not topics:
            raise CatalogConfigError("Cannot select a topic from an empty catalog")
        best = self.score_topic(topics[0], knowledge, attempts_by_topic)
        for topic in topics[1:]:
            candidate = self.score_topic(topic, knowledge, attempts_by_topic)
            if candidate.score > best.score:
                best = candidate
        return best.topic
