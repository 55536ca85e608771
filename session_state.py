"""Per-learner assessment session aggregate."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from engines.mastery import CORRECT_THRESHOLD
from engines.validation import (
    InvalidStateError,
    InvalidTopic,
    validate_difficulty,
    validate_mastery,
    validate_score,
    validate_time_spent,
)
from topic_graph import TopicGraph


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class KnowledgeState:
    topic: str
    mastery: float = 0.0
    streak: int = 0
    last_practiced: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "mastery": self.mastery,
            "streak": self.streak,
            "last_practiced": _format_timestamp(self.last_practiced),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "KnowledgeState":
        return cls(
            topic=str(payload["topic"]),
            mastery=float(payload.get("mastery", 0.0)),
            streak=int(payload.get("streak", 0)),
            last_practiced=_parse_timestamp(payload.get("last_practiced")),
        )


@dataclass(frozen=True)
class AttemptRecord:
    """Immutable log entry for one evaluated answer."""

    topic: str
    question: str
    answer: str
    score: float
    difficulty: str
    timestamp: datetime = field(default_factory=_now)
    time_spent: float = 0.0
    feedback: str = ""

    @property
    def correct(self) -> bool:
        return self.score >= CORRECT_THRESHOLD

    def validated(self) -> "AttemptRecord":
        """Return a copy with normalised score, difficulty and timestamp."""
        timestamp = _parse_timestamp(self.timestamp) or _now()
        return replace(
            self,
            score=validate_score(self.score),
            difficulty=validate_difficulty(self.difficulty),
            time_spent=validate_time_spent(self.time_spent),
            timestamp=timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "question": self.question,
            "answer": self.answer,
            "score": self.score,
            "difficulty": self.difficulty,
            "timestamp": _format_timestamp(self.timestamp),
            "time_spent": self.time_spent,
            "feedback": self.feedback,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AttemptRecord":
        return cls(
            topic=str(payload["topic"]),
            question=str(payload.get("question") or ""),
            answer=str(payload.get("answer") or ""),
            score=float(payload["score"]),
            difficulty=str(payload.get("difficulty") or "medium"),
            timestamp=_parse_timestamp(payload.get("timestamp")) or _now(),
            time_spent=float(payload.get("time_spent") or 0.0),
            feedback=str(payload.get("feedback") or ""),
        )


class SessionState:
    """Mutable progress of one learner during one assessment.

    The topic catalog and its default mastery values are passed in
    explicitly. Readers and writers must hold ``lock`` when they need a
    consistent view across several calls; the mutating methods take it
    themselves.
    """

    def __init__(
        self,
        graph: TopicGraph,
        *,
        user_id: str,
        session_id: Optional[str] = None,
        initial_mastery: Optional[Mapping[str, float]] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.graph = graph
        self.user_id = user_id
        self.session_id = session_id or uuid.uuid4().hex
        self.created_at = created_at or _now()
        self.completed_at: Optional[datetime] = None
        self.current_topic: Optional[str] = None
        self.lock = threading.RLock()

        self._knowledge: Dict[str, KnowledgeState] = {}
        self._attempts: List[AttemptRecord] = []
        self._streaks: Dict[str, int] = {}
        self._velocity: Dict[str, float] = {}

        for topic, mastery in (initial_mastery or {}).items():
            self._require_topic(topic)
            self._knowledge[topic] = KnowledgeState(topic=topic, mastery=validate_mastery(mastery))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def attempts(self) -> List[AttemptRecord]:
        with self.lock:
            return list(self._attempts)

    def knowledge_state(self, topic: str) -> Optional[KnowledgeState]:
        self._require_topic(topic)
        with self.lock:
            state = self._knowledge.get(topic)
            return replace(state) if state is not None else None

    def current_mastery(self, topic: str) -> float:
        self._require_topic(topic)
        with self.lock:
            state = self._knowledge.get(topic)
            if state is None:
                return self.graph.default_mastery(topic)
            return state.mastery

    def mastery_map(self) -> Dict[str, float]:
        """Mastery for every catalog topic, defaults included."""
        with self.lock:
            return {topic: self.current_mastery(topic) for topic in self.graph.topics()}

    def streak(self, topic: str) -> int:
        self._require_topic(topic)
        with self.lock:
            return self._streaks.get(topic, 0)

    def velocity(self, topic: str) -> float:
        self._require_topic(topic)
        with self.lock:
            return self._velocity.get(topic, 0.0)

    def history(self, topic: Optional[str] = None) -> List[AttemptRecord]:
        if topic is not None:
            self._require_topic(topic)
        with self.lock:
            if topic is None:
                return list(self._attempts)
            return [record for record in self._attempts if record.topic == topic]

    def recent_scores(self, topic: str, limit: int = 5) -> List[float]:
        scores = [record.score for record in self.history(topic)]
        return scores[-limit:] if limit > 0 else []

    def attempts_by_topic(self) -> Dict[str, int]:
        with self.lock:
            counts = {topic: 0 for topic in self.graph.topics()}
            for record in self._attempts:
                counts[record.topic] = counts.get(record.topic, 0) + 1
            return counts

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "knowledge_state": self.mastery_map(),
                "streaks": dict(self._streaks),
                "velocity": dict(self._velocity),
            }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def record_attempt(
        self,
        record: AttemptRecord,
        *,
        mastery: float,
        streak: int,
        velocity: float,
    ) -> KnowledgeState:
        """Append ``record`` and store the updated statistics for its topic.

        Validation happens before anything is mutated, so a rejected call
        leaves the session untouched.
        """

        self._require_topic(record.topic)
        record = record.validated()
        mastery = validate_mastery(mastery)
        with self.lock:
            self._ensure_open()
            state = self._knowledge.get(record.topic)
            if state is None:
                state = KnowledgeState(topic=record.topic)
                self._knowledge[record.topic] = state
            state.mastery = mastery
            state.streak = int(streak)
            state.last_practiced = record.timestamp
            self._attempts.append(record)
            self._streaks[record.topic] = int(streak)
            self._velocity[record.topic] = float(velocity)
            return replace(state)

    def complete(self, completed_at: Optional[datetime] = None) -> None:
        with self.lock:
            self._ensure_open()
            self.completed_at = completed_at or _now()

    def set_current_topic(self, topic: str) -> None:
        self._require_topic(topic)
        with self.lock:
            self._ensure_open()
            self.current_topic = topic

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "session_id": self.session_id,
                "user_id": self.user_id,
                "created_at": _format_timestamp(self.created_at),
                "completed_at": _format_timestamp(self.completed_at),
                "current_topic": self.current_topic,
                "knowledge_states": [state.to_dict() for state in self._knowledge.values()],
                "attempts": [record.to_dict() for record in self._attempts],
                "streaks": dict(self._streaks),
                "velocity": dict(self._velocity),
            }

    @classmethod
    def from_dict(cls, graph: TopicGraph, payload: Mapping[str, Any]) -> "SessionState":
        session = cls(
            graph,
            user_id=str(payload["user_id"]),
            session_id=str(payload["session_id"]),
            created_at=_parse_timestamp(payload.get("created_at")),
        )
        for entry in payload.get("knowledge_states", []):
            state = KnowledgeState.from_dict(entry)
            session._require_topic(state.topic)
            session._knowledge[state.topic] = state
        for entry in payload.get("attempts", []):
            record = AttemptRecord.from_dict(entry)
            session._require_topic(record.topic)
            session._attempts.append(record)
        session._streaks = {str(k): int(v) for k, v in (payload.get("streaks") or {}).items()}
        session._velocity = {str(k): float(v) for k, v in (payload.get("velocity") or {}).items()}
        current = payload.get("current_topic")
        session.current_topic = str(current) if current else None
        session.completed_at = _parse_timestamp(payload.get("completed_at"))
        return session

    # ------------------------------------------------------------------
    def _require_topic(self, topic: str) -> None:
        if topic not in self.graph:
            raise InvalidTopic(topic, self.graph.topics())

    def _ensure_open(self) -> None:
        if self.completed_at is not None:
            raise InvalidStateError(f"Session {self.session_id} is completed")

    def __repr__(self) -> str:
        return (
            f"SessionState(session_id={self.session_id!r}, user_id={self.user_id!r}, "
            f"attempts={len(self._attempts)}, completed={self.is_completed})"
        )
