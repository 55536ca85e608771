"""Pydantic schemas for the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

__all__ = [
    "ActivityEntry",
    "CompleteSessionRequest",
    "EvaluateRequest",
    "EvaluationResponse",
    "HintRequest",
    "HintResponse",
    "QuestionRequest",
    "QuestionResponse",
    "SessionResponse",
    "StartSessionRequest",
    "StatsResponse",
    "TopicScoreEntry",
]

DifficultyLabel = Literal["easy", "medium", "hard"]


class StartSessionRequest(BaseModel):
    user_id: str = Field(min_length=1)
    initial_mastery: Dict[str, float] | None = Field(
        default=None,
        description="Optional starting mastery per topic; catalog defaults apply elsewhere.",
    )
    resume: bool = Field(
        default=True,
        description="Reuse the learner's latest open session; ignored when initial_mastery is given.",
    )


class SessionRef(BaseModel):
    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)


class SessionResponse(BaseModel):
    session_id: str
    user_id: str
    knowledge_states: Dict[str, float]
    streaks: Dict[str, int]
    velocity: Dict[str, float]
    current_topic: str | None = None
    question_count: int = 0
    completed: bool = False


class QuestionRequest(SessionRef):
    topic: str | None = Field(default=None, description="Force a topic instead of the selector's choice.")


class QuestionResponse(BaseModel):
    question_id: str
    session_id: str
    topic: str
    difficulty: DifficultyLabel
    content: str
    mastery: float
    theta: float
    reason: str


class EvaluateRequest(SessionRef):
    topic: str
    question: str
    answer: str = ""
    difficulty: DifficultyLabel
    time_spent: float = Field(default=0.0, ge=0.0, description="Seconds spent on the question.")
    language: str = "en"


class EvaluationResponse(BaseModel):
    session_id: str
    topic: str
    difficulty: DifficultyLabel
    score: float = Field(ge=0.0, le=1.0)
    correct: bool
    feedback: str
    new_mastery: float = Field(ge=0.0, le=1.0)
    mastery_change: float
    streak: int
    velocity: float


class HintRequest(SessionRef):
    topic: str
    context: str = ""
    attempt: int = Field(default=0, ge=0)


class HintResponse(BaseModel):
    topic: str
    hint: str


class CompleteSessionRequest(SessionRef):
    pass


class ActivityEntry(BaseModel):
    topic: str
    difficulty: str
    result: Literal["Correct", "Incorrect"]
    score: float
    timestamp: str


class StatsResponse(BaseModel):
    total_questions_answered: int
    correct_answers: int
    accuracy: float
    strongest_topic: str
    weakest_topic: str
    avg_time_per_question: str
    knowledge_states: Dict[str, float]
    recent_activities: List[ActivityEntry]
    current_streaks: Dict[str, int]
    learning_velocity: Dict[str, float]


class TopicScoreEntry(BaseModel):
    topic: str
    score: float
    mastery: float
    attempts: int
    prerequisites_met: bool
    missing_prerequisites: List[str]

    @classmethod
    def from_score(cls, payload: Dict[str, Any]) -> "TopicScoreEntry":
        return cls(**{key: payload[key] for key in cls.model_fields})
