"""Adaptive assessment loop: select, ask, evaluate, update.

The engine reads session inputs under the session lock, releases it while
the text-generation backend works, and re-acquires it only to apply the
result. A backend failure leaves the session exactly as it was.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from engines.analytics import session_stats
from engines.difficulty_manager import DifficultyDecision, DifficultySelector
from engines.mastery import MasteryUpdate, MasteryUpdateEngine
from engines.prerequisites import PrerequisiteChecker
from engines.scoring import extract_score
from engines.topic_selector import TopicSelector
from engines.validation import (
    GenerationUnavailable,
    InvalidStateError,
    SessionNotFound,
    validate_difficulty,
)
from session_state import AttemptRecord, SessionState
from topic_graph import TopicGraph, default_topic_graph
import tutor

_LOGGER = logging.getLogger(__name__)


def _log_json(event: str, payload: Dict[str, Any]) -> None:
    """Emit structured JSON logs for downstream analysis."""

    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    _LOGGER.info(message)


class SessionStore(Protocol):
    def save_session(self, session: SessionState) -> Any: ...

    def load_session(self, user_id: str, session_id: str, graph: TopicGraph) -> Optional[SessionState]: ...

    def latest_session(
        self, user_id: str, graph: TopicGraph, *, include_completed: bool = False
    ) -> Optional[SessionState]: ...

    def load_sessions(self, user_id: str, graph: TopicGraph) -> List[SessionState]: ...


@dataclass(frozen=True)
class Question:
    question_id: str
    session_id: str
    topic: str
    difficulty: str
    content: str
    mastery: float
    theta: float
    reason: str
    generated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "session_id": self.session_id,
            "topic": self.topic,
            "difficulty": self.difficulty,
            "content": self.content,
            "mastery": self.mastery,
            "theta": self.theta,
            "reason": self.reason,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class Evaluation:
    session_id: str
    topic: str
    difficulty: str
    score: float
    correct: bool
    feedback: str
    update: MasteryUpdate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "topic": self.topic,
            "difficulty": self.difficulty,
            "score": self.score,
            "correct": self.correct,
            "feedback": self.feedback,
            "new_mastery": self.update.mastery_after,
            "mastery_change": self.update.increment,
            "streak": self.update.streak_after,
            "velocity": self.update.velocity,
        }


class AdaptiveAssessmentEngine:
    """Drive assessment sessions for many learners.

    Parameters
    ----------
    generator:
        Text-generation backend used for questions, grading feedback and
        hints. Injected so tests can supply a deterministic stub.
    graph:
        Topic catalog; the built-in catalog when omitted.
    store:
        Optional persistence with ``save_session``/``load_session``/
        ``latest_session``/``load_sessions``. Sessions live only in memory
        when omitted.
    score_extractor:
        Maps grading feedback text to a score in [0, 1].
    """

    def __init__(
        self,
        generator: tutor.TextGenerator,
        graph: Optional[TopicGraph] = None,
        *,
        store: Optional[SessionStore] = None,
        topic_selector: Optional[TopicSelector] = None,
        difficulty_selector: Optional[DifficultySelector] = None,
        mastery_engine: Optional[MasteryUpdateEngine] = None,
        score_extractor: Callable[[str], float] = extract_score,
        question_max_tokens: int = 256,
        feedback_max_tokens: int = 512,
    ) -> None:
        self.generator = generator
        self.graph = graph or default_topic_graph()
        self.graph.validate()
        self.store = store
        self.checker = PrerequisiteChecker(self.graph)
        self.topic_selector = topic_selector or TopicSelector(self.graph, self.checker)
        self.difficulty_selector = difficulty_selector or DifficultySelector()
        self.mastery_engine = mastery_engine or MasteryUpdateEngine()
        self.score_extractor = score_extractor
        self.question_max_tokens = int(question_max_tokens)
        self.feedback_max_tokens = int(feedback_max_tokens)
        self._sessions: Dict[Tuple[str, str], SessionState] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def start_session(
        self,
        user_id: str,
        *,
        initial_mastery: Optional[Mapping[str, float]] = None,
        resume: bool = True,
    ) -> SessionState:
        """Resume the learner's latest open session or create a new one.

        Seeding ``initial_mastery`` always starts a fresh session; an existing
        session's knowledge is never overwritten.
        """

        if not user_id:
            raise ValueError("user_id is required")
        if resume and not initial_mastery:
            existing = self._find_open_session(user_id)
            if existing is not None:
                _log_json("session_resumed", {"user_id": user_id, "session_id": existing.session_id})
                return existing

        session = SessionState(self.graph, user_id=user_id, initial_mastery=initial_mastery)
        self._register(session)
        self._persist(session)
        _log_json(
            "session_started",
            {"user_id": user_id, "session_id": session.session_id, "topics": len(self.graph)},
        )
        return session

    def get_session(self, user_id: str, session_id: str) -> SessionState:
        key = (user_id, session_id)
        with self._registry_lock:
            session = self._sessions.get(key)
        if session is not None:
            return session
        if self.store is not None:
            session = self.store.load_session(user_id, session_id, self.graph)
            if session is not None:
                return self._register(session)
        raise SessionNotFound(f"session {session_id} not found for user {user_id}")

    def complete_session(self, session: SessionState) -> Dict[str, Any]:
        session.complete()
        self._persist(session)
        summary = self.stats(session)
        _log_json(
            "session_completed",
            {
                "user_id": session.user_id,
                "session_id": session.session_id,
                "questions": summary["total_questions_answered"],
                "accuracy": summary["accuracy"],
            },
        )
        return summary

    # ------------------------------------------------------------------
    # Question generation
    # ------------------------------------------------------------------
    def recommend_topic(self, session: SessionState) -> str:
        with session.lock:
            return self.topic_selector.select_next_topic(
                session.mastery_map(), session.attempts_by_topic()
            )

    def choose_difficulty(self, session: SessionState, topic: str) -> DifficultyDecision:
        with session.lock:
            return self.difficulty_selector.decide(
                topic,
                session.current_mastery(topic),
                session.recent_scores(topic, self.difficulty_selector.window_size),
            )

    def next_question(self, session: SessionState, topic: Optional[str] = None) -> Question:
        with session.lock:
            if session.is_completed:
                raise InvalidStateError(f"Session {session.session_id} is completed")
            if topic is None:
                topic = self.recommend_topic(session)
            else:
                self.graph.require(topic)
            decision = self.choose_difficulty(session, topic)
            mastery = session.current_mastery(topic)
            previous = [record.question for record in session.history(topic)]

        prompt = tutor.build_question_prompt(topic, decision.difficulty, mastery, previous)
        text = self.generator.generate_text(prompt, {"max_tokens": self.question_max_tokens})
        content = tutor.clean_question_text(text)
        if not content:
            raise GenerationUnavailable("Backend returned an empty question")

        with session.lock:
            session.set_current_topic(topic)
        self._persist(session)

        question = Question(
            question_id=f"q_{uuid.uuid4().hex[:12]}",
            session_id=session.session_id,
            topic=topic,
            difficulty=decision.difficulty,
            content=content,
            mastery=mastery,
            theta=decision.theta,
            reason=decision.reason,
            generated_at=datetime.now(timezone.utc),
        )
        _log_json(
            "question_generated",
            {
                "session_id": session.session_id,
                "topic": topic,
                "difficulty": decision.difficulty,
                "theta": round(decision.theta, 3),
                "mastery": round(mastery, 3),
            },
        )
        return question

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate_answer(
        self,
        session: SessionState,
        *,
        topic: str,
        question: str,
        answer: str,
        difficulty: str,
        time_spent: float = 0.0,
        language: str = "en",
    ) -> Evaluation:
        """Grade ``answer`` through the backend and apply the mastery update.

        ``GenerationUnavailable`` propagates unchanged and nothing is
        recorded on the session.
        """

        self.graph.require(topic)
        difficulty = validate_difficulty(difficulty)
        if session.is_completed:
            raise InvalidStateError(f"Session {session.session_id} is completed")

        prompt = tutor.build_evaluation_prompt(topic, question, answer, difficulty, language)
        feedback = self.generator.generate_text(prompt, {"max_tokens": self.feedback_max_tokens})
        score = self.score_extractor(feedback)

        record = AttemptRecord(
            topic=topic,
            question=question,
            answer=answer,
            score=score,
            difficulty=difficulty,
            time_spent=time_spent,
            feedback=feedback,
        )
        update = self.mastery_engine.apply_attempt(session, record)
        self._persist(session)

        _log_json(
            "answer_evaluated",
            {
                "session_id": session.session_id,
                "topic": topic,
                "difficulty": difficulty,
                "score": round(score, 3),
                "mastery_before": round(update.mastery_before, 3),
                "mastery_after": round(update.mastery_after, 3),
                "streak": update.streak_after,
            },
        )
        return Evaluation(
            session_id=session.session_id,
            topic=topic,
            difficulty=difficulty,
            score=score,
            correct=update.correct,
            feedback=feedback,
            update=update,
        )

    # ------------------------------------------------------------------
    # Hints and statistics
    # ------------------------------------------------------------------
    def hint(self, session: SessionState, topic: str, context: str = "", attempt: int = 0) -> str:
        """Ask the backend for a hint; fall back to a canned hint when it is down."""

        mastery = session.current_mastery(topic)
        prompt = tutor.build_hint_prompt(topic, mastery, context, attempt)
        try:
            text = self.generator.generate_text(prompt, {"max_tokens": 128}).strip()
        except GenerationUnavailable as exc:
            _LOGGER.warning("Hint generation unavailable, using fallback: %s", exc)
            return tutor.fallback_hint(topic, attempt)
        return text or tutor.fallback_hint(topic, attempt)

    def stats(self, session: SessionState) -> Dict[str, Any]:
        return session_stats([session])

    def user_stats(self, user_id: str) -> Dict[str, Any]:
        sessions: Iterable[SessionState]
        if self.store is not None:
            sessions = self.store.load_sessions(user_id, self.graph)
        else:
            with self._registry_lock:
                sessions = [s for (uid, _), s in self._sessions.items() if uid == user_id]
        return session_stats(sessions)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _register(self, session: SessionState) -> SessionState:
        key = (session.user_id, session.session_id)
        with self._registry_lock:
            return self._sessions.setdefault(key, session)

    def _find_open_session(self, user_id: str) -> Optional[SessionState]:
        """Latest open session by ``created_at``; later registration wins ties."""

        with self._registry_lock:
            candidates = [
                session
                for (uid, _), session in self._sessions.items()
                if uid == user_id and not session.is_completed
            ]
        if self.store is not None:
            stored = self.store.latest_session(user_id, self.graph)
            if stored is not None:
                stored = self._register(stored)
                if not stored.is_completed and stored not in candidates:
                    candidates.append(stored)
        if not candidates:
            return None
        ranked = sorted(enumerate(candidates), key=lambda item: (item[1].created_at, item[0]))
        return ranked[-1][1]

    def _persist(self, session: SessionState) -> None:
        if self.store is None:
            return
        with session.lock:
            self.store.save_session(session)
