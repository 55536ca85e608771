"""Learner statistics derived from assessment sessions."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from engines.mastery import CORRECT_THRESHOLD
from session_state import AttemptRecord, SessionState


def format_duration(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    minutes = int(seconds // 60)
    remainder = int(seconds % 60)
    return f"{minutes}m {remainder}s"


def _strongest_and_weakest(knowledge: Dict[str, float]) -> tuple[str, str]:
    strongest, weakest = "", ""
    highest, lowest = -1.0, 2.0
    for topic, mastery in knowledge.items():
        if mastery > highest:
            highest = mastery
            strongest = topic
        if mastery < lowest:
            lowest = mastery
            weakest = topic
    return strongest, weakest


def recent_activities(attempts: Iterable[AttemptRecord], limit: int = 10) -> List[Dict[str, Any]]:
    ordered = sorted(attempts, key=lambda record: record.timestamp, reverse=True)
    return [
        {
            "topic": record.topic,
            "difficulty": record.difficulty,
            "result": "Correct" if record.score >= CORRECT_THRESHOLD else "Incorrect",
            "score": record.score,
            "timestamp": record.timestamp.isoformat(),
        }
        for record in ordered[:limit]
    ]


def session_stats(
    sessions: Iterable[SessionState],
    *,
    recent_limit: int = 10,
    practiced_only: bool = True,
) -> Dict[str, Any]:
    """Aggregate statistics over one or more sessions of the same learner.

    Knowledge states keep the most recently practised mastery per topic.
    Streaks keep the maximum across sessions, velocity the latest value.
    With ``practiced_only`` the strongest/weakest ranking ignores topics the
    learner never attempted.
    """

    attempts: List[AttemptRecord] = []
    latest: Dict[str, tuple[Optional[Any], float]] = {}
    streaks: Dict[str, int] = {}
    velocity: Dict[str, float] = {}

    for session in sessions:
        with session.lock:
            attempts.extend(session.history())
            for topic in session.graph.topics():
                state = session.knowledge_state(topic)
                if state is None:
                    if practiced_only or topic in latest:
                        continue
                    latest[topic] = (None, session.current_mastery(topic))
                    continue
                previous = latest.get(topic)
                practiced = state.last_practiced
                if (
                    previous is None
                    or previous[0] is None
                    or (practiced is not None and practiced > previous[0])
                ):
                    latest[topic] = (practiced, state.mastery)
            for topic, streak in session.snapshot()["streaks"].items():
                streaks[topic] = max(streaks.get(topic, 0), streak)
            velocity.update(session.snapshot()["velocity"])

    knowledge = {topic: mastery for topic, (_, mastery) in latest.items()}
    total = len(attempts)
    correct = sum(1 for record in attempts if record.score >= CORRECT_THRESHOLD)
    accuracy = round((correct / total) * 100, 1) if total else 0.0
    total_time = sum(record.time_spent for record in attempts)
    strongest, weakest = _strongest_and_weakest(knowledge)

    return {
        "total_questions_answered": total,
        "correct_answers": correct,
        "accuracy": accuracy,
        "strongest_topic": strongest,
        "weakest_topic": weakest,
        "avg_time_per_question": format_duration(total_time / total if total else 0.0),
        "knowledge_states": knowledge,
        "recent_activities": recent_activities(attempts, recent_limit),
        "current_streaks": streaks,
        "learning_velocity": velocity,
    }
