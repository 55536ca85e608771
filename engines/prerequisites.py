"""Advisory prerequisite checks against a learner's current mastery."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from topic_graph import TopicGraph


@dataclass(frozen=True)
class PrerequisiteCheck:
    allowed: bool
    missing: List[str] = field(default_factory=list)
    thresholds: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "missing": list(self.missing),
            "thresholds": dict(self.thresholds),
        }


class PrerequisiteChecker:
    """Decide whether a topic's prerequisites are sufficiently mastered.

    Each prerequisite edge requires ``base_floor + weight * scale_factor``
    mastery on the prerequisite topic. With the defaults, thresholds span
    [0.3, 0.6]. The result biases topic selection but never blocks a topic.
    """

    def __init__(
        self,
        graph: TopicGraph,
        base_floor: float = 0.3,
        scale_factor: float = 0.3,
    ) -> None:
        if not 0.0 <= base_floor <= 1.0:
            raise ValueError("base_floor must be in [0, 1]")
        if scale_factor < 0.0 or base_floor + scale_factor > 1.0:
            raise ValueError("base_floor + scale_factor must not exceed 1")
        self.graph = graph
        self.base_floor = float(base_floor)
        self.scale_factor = float(scale_factor)

    def required_threshold(self, weight: float) -> float:
        return self.base_floor + weight * self.scale_factor

    def can_proceed(self, topic: str, knowledge: Mapping[str, float]) -> PrerequisiteCheck:
        """Check ``topic`` against ``knowledge`` (topic -> mastery).

        Prerequisites absent from ``knowledge`` fall back to the catalog's
        default mastery. ``missing`` keeps the declaration order of the edges.
        """

        missing: List[str] = []
        thresholds: Dict[str, float] = {}
        for prerequisite, weight in self.graph.prerequisites_of(topic):
            required = self.required_threshold(weight)
            thresholds[prerequisite] = required
            mastery = knowledge.get(prerequisite)
            if mastery is None:
                mastery = self.graph.default_mastery(prerequisite)
            if float(mastery) < required:
                missing.append(prerequisite)
        return PrerequisiteCheck(allowed=not missing, missing=missing, thresholds=thresholds)
