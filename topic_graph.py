"""Static topic catalog with weighted prerequisite edges."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Tuple
import json
import logging

import yaml

from engines.validation import CatalogConfigError, InvalidTopic

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopicNode:
    """A skill area learners can practise."""

    name: str
    default_mastery: float = 0.0
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "default_mastery": self.default_mastery,
            "description": self.description,
        }


@dataclass(frozen=True)
class PrerequisiteEdge:
    """``prerequisite`` must be partially mastered before ``topic`` unlocks."""

    topic: str
    prerequisite: str
    weight: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "prerequisite": self.prerequisite,
            "weight": self.weight,
        }


def _catalog_number(value: Any, label: str) -> float:
    if isinstance(value, bool):
        raise CatalogConfigError(f"{label} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise CatalogConfigError(f"{label} must be a number, got {value!r}") from exc


def _load_catalog_payload(path: Path) -> Any:
    suffix = path.suffix.lower()
    text = Path(path).read_text(encoding="utf-8")
    try:
        if suffix in {".json", ".jsonc"}:
            return json.loads(text)
        if suffix in {".yml", ".yaml"}:
            return yaml.safe_load(text) or {}
    except (ValueError, yaml.YAMLError) as exc:
        raise CatalogConfigError(f"Cannot parse topic catalog {path}: {exc}") from exc
    raise CatalogConfigError(f"Unsupported topic catalog format: {path}")


class TopicGraph:
    """Catalog of topics and the prerequisite edges between them.

    Topics keep their insertion order, which is the catalog order used to
    break ties during topic selection.
    """

    def __init__(self) -> None:
        self._topics: Dict[str, TopicNode] = {}
        self._prerequisites: Dict[str, List[PrerequisiteEdge]] = {}
        self._dependents: Dict[str, List[PrerequisiteEdge]] = {}

    # ------------------------------------------------------------------
    def add_topic(
        self,
        name: str,
        default_mastery: float = 0.0,
        description: str = "",
    ) -> TopicNode:
        if not isinstance(name, str) or not name.strip():
            raise CatalogConfigError(f"Topic names must be non-empty strings, got {name!r}")
        if name in self._topics:
            raise CatalogConfigError(f"Duplicate topic in catalog: {name}")
        default_mastery = _catalog_number(default_mastery, f"Default mastery for {name}")
        if not 0.0 <= default_mastery <= 1.0:
            raise CatalogConfigError(
                f"Default mastery for {name} must be within [0, 1], got {default_mastery}"
            )
        node = TopicNode(name=name, default_mastery=default_mastery, description=description)
        self._topics[name] = node
        self._prerequisites.setdefault(name, [])
        self._dependents.setdefault(name, [])
        return node

    # ------------------------------------------------------------------
    def add_prerequisite(self, topic: str, prerequisite: str, weight: float = 1.0) -> None:
        if topic not in self._topics:
            raise CatalogConfigError(f"Prerequisite edge references unknown topic: {topic}")
        if prerequisite not in self._topics:
            raise CatalogConfigError(
                f"Topic {topic} lists unknown prerequisite: {prerequisite}"
            )
        if topic == prerequisite:
            raise CatalogConfigError(f"Topic {topic} cannot be its own prerequisite")
        weight = _catalog_number(weight, f"Weight for {prerequisite} -> {topic}")
        if not 0.0 < weight <= 1.0:
            raise CatalogConfigError(
                f"Weight for {prerequisite} -> {topic} must be in (0, 1], got {weight}"
            )
        if any(edge.prerequisite == prerequisite for edge in self._prerequisites[topic]):
            raise CatalogConfigError(f"Duplicate prerequisite {prerequisite} for {topic}")
        edge = PrerequisiteEdge(topic=topic, prerequisite=prerequisite, weight=weight)
        self._prerequisites[topic].append(edge)
        self._dependents[prerequisite].append(edge)

    # ------------------------------------------------------------------
    def topics(self) -> List[str]:
        return list(self._topics)

    # ------------------------------------------------------------------
    def require(self, name: str) -> TopicNode:
        node = self._topics.get(name)
        if node is None:
            raise InvalidTopic(name, self._topics)
        return node

    # ------------------------------------------------------------------
    def default_mastery(self, name: str) -> float:
        return self.require(name).default_mastery

    # ------------------------------------------------------------------
    def default_knowledge(self) -> Dict[str, float]:
        return {name: node.default_mastery for name, node in self._topics.items()}

    # ------------------------------------------------------------------
    def prerequisites_of(self, topic: str) -> List[Tuple[str, float]]:
        """Return ``(prerequisite, weight)`` pairs in declaration order."""

        self.require(topic)
        return [(edge.prerequisite, edge.weight) for edge in self._prerequisites[topic]]

    # ------------------------------------------------------------------
    def dependents_of(self, topic: str) -> List[str]:
        self.require(topic)
        return [edge.topic for edge in self._dependents[topic]]

    # ------------------------------------------------------------------
    def ancestors(self, topic: str) -> List[str]:
        """All direct and transitive prerequisites of ``topic``."""

        self.require(topic)
        visited: List[str] = []
        stack: List[str] = [topic]
        while stack:
            current = stack.pop()
            for edge in self._prerequisites.get(current, []):
                if edge.prerequisite not in visited:
                    visited.append(edge.prerequisite)
                    stack.append(edge.prerequisite)
        return visited

    # ------------------------------------------------------------------
    def validate(self) -> None:
        """Reject empty catalogs and prerequisite cycles."""

        if not self._topics:
            raise CatalogConfigError("Topic catalog is empty")

        white, grey, black = 0, 1, 2
        colour = {name: white for name in self._topics}

        for root in self._topics:
            if colour[root] != white:
                continue
            colour[root] = grey
            path: List[str] = [root]
            stack: List[Iterator[PrerequisiteEdge]] = [iter(self._prerequisites[root])]
            while stack:
                edge = next(stack[-1], None)
                if edge is None:
                    colour[path.pop()] = black
                    stack.pop()
                    continue
                target = edge.prerequisite
                if colour[target] == grey:
                    cycle = path[path.index(target):] + [target]
                    raise CatalogConfigError(
                        "Prerequisite cycle detected: " + " -> ".join(cycle)
                    )
                if colour[target] == white:
                    colour[target] = grey
                    path.append(target)
                    stack.append(iter(self._prerequisites[target]))

    # ------------------------------------------------------------------
    def __contains__(self, name: object) -> bool:
        return name in self._topics

    def __len__(self) -> int:
        return len(self._topics)

    def __iter__(self) -> Iterator[str]:
        return iter(self._topics)

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": [node.to_dict() for node in self._topics.values()],
            "prerequisites": [
                edge.to_dict() for edges in self._prerequisites.values() for edge in edges
            ],
        }

    # ------------------------------------------------------------------
    def save_json(self, path: Path) -> None:
        path.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False))

    # ------------------------------------------------------------------
    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TopicGraph":
        """Build and validate a graph.

        ``topics`` may be a list of names, a list of objects with ``name`` and
        optional ``default_mastery``/``description``, or a mapping of name to
        default mastery (a null value there means the 0.0 default). Any
        malformed value raises ``CatalogConfigError``.
        """

        if not isinstance(payload, Mapping):
            raise CatalogConfigError(
                f"Topic catalog must be a mapping, got {type(payload).__name__}"
            )

        graph = cls()
        topics = payload.get("topics", [])
        if isinstance(topics, Mapping):
            for name, default in topics.items():
                graph.add_topic(name, 0.0 if default is None else default)
        elif isinstance(topics, list):
            for entry in topics:
                if isinstance(entry, str):
                    graph.add_topic(entry)
                elif isinstance(entry, Mapping):
                    graph.add_topic(
                        entry.get("name"),
                        entry.get("default_mastery", 0.0),
                        str(entry.get("description") or ""),
                    )
                else:
                    raise CatalogConfigError(f"Invalid topic entry: {entry!r}")
        else:
            raise CatalogConfigError("'topics' must be a list or a mapping")

        edges = payload.get("prerequisites") or []
        if not isinstance(edges, list):
            raise CatalogConfigError("'prerequisites' must be a list")
        for edge in edges:
            if not isinstance(edge, Mapping) or "topic" not in edge or "prerequisite" not in edge:
                raise CatalogConfigError(f"Invalid prerequisite entry: {edge!r}")
            graph.add_prerequisite(edge["topic"], edge["prerequisite"], edge.get("weight", 1.0))

        graph.validate()
        return graph

    # ------------------------------------------------------------------
    @classmethod
    def load(cls, path: Path) -> "TopicGraph":
        payload = _load_catalog_payload(Path(path))
        graph = cls.from_dict(payload)
        _LOGGER.info("Loaded topic catalog from %s (%d topics)", path, len(graph))
        return graph


DEFAULT_CATALOG: Dict[str, Any] = {
    "topics": [
        {"name": "Arrays", "description": "Indexing, traversal and in-place updates"},
        {"name": "Strings", "description": "String manipulation and pattern matching"},
        {"name": "Linked Lists", "description": "Singly and doubly linked structures"},
        {"name": "Stacks", "description": "LIFO structures and their applications"},
        {"name": "Queues", "description": "FIFO structures and deques"},
        {"name": "Hash Tables", "description": "Hashing, collisions and lookups"},
        {"name": "Recursion", "description": "Recursive decomposition and base cases"},
        {"name": "Sorting", "description": "Comparison and counting sorts"},
        {"name": "Binary Search", "description": "Searching sorted sequences"},
        {"name": "Trees", "description": "Tree terminology and traversals"},
        {"name": "Binary Search Trees", "description": "Ordered trees and their operations"},
        {"name": "Heaps", "description": "Priority queues and heap operations"},
        {"name": "Graphs", "description": "Graph representations, BFS and DFS"},
        {"name": "Dynamic Programming", "description": "Overlapping subproblems and memoisation"},
    ],
    "prerequisites": [
        {"topic": "Strings", "prerequisite": "Arrays", "weight": 0.5},
        {"topic": "Linked Lists", "prerequisite": "Arrays", "weight": 0.5},
        {"topic": "Stacks", "prerequisite": "Arrays", "weight": 0.4},
        {"topic": "Queues", "prerequisite": "Arrays", "weight": 0.4},
        {"topic": "Hash Tables", "prerequisite": "Arrays", "weight": 0.6},
        {"topic": "Sorting", "prerequisite": "Arrays", "weight": 0.8},
        {"topic": "Sorting", "prerequisite": "Recursion", "weight": 0.5},
        {"topic": "Binary Search", "prerequisite": "Sorting", "weight": 0.6},
        {"topic": "Trees", "prerequisite": "Recursion", "weight": 0.8},
        {"topic": "Trees", "prerequisite": "Linked Lists", "weight": 0.5},
        {"topic": "Binary Search Trees", "prerequisite": "Trees", "weight": 1.0},
        {"topic": "Binary Search Trees", "prerequisite": "Binary Search", "weight": 0.7},
        {"topic": "Heaps", "prerequisite": "Trees", "weight": 0.7},
        {"topic": "Graphs", "prerequisite": "Trees", "weight": 0.8},
        {"topic": "Graphs", "prerequisite": "Queues", "weight": 0.5},
        {"topic": "Graphs", "prerequisite": "Stacks", "weight": 0.5},
        {"topic": "Dynamic Programming", "prerequisite": "Recursion", "weight": 1.0},
        {"topic": "Dynamic Programming", "prerequisite": "Hash Tables", "weight": 0.5},
    ],
}


def default_topic_graph() -> TopicGraph:
    return TopicGraph.from_dict(DEFAULT_CATALOG)


__all__ = [
    "DEFAULT_CATALOG",
    "PrerequisiteEdge",
    "TopicGraph",
    "TopicNode",
    "default_topic_graph",
]
