# app.py - Adaptive Mastery Engine v1.0.0
# - Sessions, questions, grading and hints over a local chat-completions backend
# - Topic catalog from TOPIC_CATALOG_PATH or the built-in catalog

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import db, tutor
from engines.assessment import AdaptiveAssessmentEngine
from engines.validation import (
    CatalogConfigError,
    GenerationUnavailable,
    InvalidStateError,
    InvalidTopic,
    SessionNotFound,
    ValidationError,
)
from schemas import (
    CompleteSessionRequest,
    EvaluateRequest,
    EvaluationResponse,
    HintRequest,
    HintResponse,
    QuestionRequest,
    QuestionResponse,
    SessionResponse,
    StartSessionRequest,
    StatsResponse,
    TopicScoreEntry,
)
from session_state import SessionState
from topic_graph import TopicGraph, default_topic_graph

logger = logging.getLogger(__name__)

_LLM_LOGGER = logging.getLogger("mastery.llm")
if not _LLM_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _LLM_LOGGER.addHandler(_handler)
_LLM_LOGGER.setLevel(getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO))
_LLM_LOGGER.propagate = False


def _load_graph() -> TopicGraph:
    catalog_path = os.getenv("TOPIC_CATALOG_PATH")
    if catalog_path:
        return TopicGraph.load(Path(catalog_path))
    return default_topic_graph()


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        from env_validation import validate_environment
        validate_environment()

        db.init()
        logger.info(
            "Adaptive engine ready: model=%s url=%s topics=%d",
            ENGINE.generator.model_id if isinstance(ENGINE.generator, tutor.LLMClient) else "custom",
            tutor.LLM_URL,
            len(ENGINE.graph),
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Adaptive Mastery Engine", version="1.0.0", lifespan=_lifespan)

ENGINE = AdaptiveAssessmentEngine(tutor.LLMClient(), _load_graph(), store=db)


# ---------- Error mapping ----------
def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(InvalidTopic)
async def _invalid_topic(_: Request, exc: InvalidTopic):
    return _error(400, exc)


@app.exception_handler(ValidationError)
async def _invalid_input(_: Request, exc: ValidationError):
    return _error(400, exc)


@app.exception_handler(SessionNotFound)
async def _session_not_found(_: Request, exc: SessionNotFound):
    return _error(404, exc)


@app.exception_handler(InvalidStateError)
async def _invalid_state(_: Request, exc: InvalidStateError):
    return _error(409, exc)


@app.exception_handler(GenerationUnavailable)
async def _generation_unavailable(_: Request, exc: GenerationUnavailable):
    logger.warning("Text generation unavailable: %s", exc)
    return _error(503, exc)


@app.exception_handler(CatalogConfigError)
async def _catalog_error(_: Request, exc: CatalogConfigError):
    logger.error("Topic catalog misconfigured: %s", exc)
    return _error(500, exc)


# ---------- Helpers ----------
def _session_response(session: SessionState) -> SessionResponse:
    snapshot = session.snapshot()
    return SessionResponse(
        session_id=session.session_id,
        user_id=session.user_id,
        knowledge_states=snapshot["knowledge_state"],
        streaks=snapshot["streaks"],
        velocity=snapshot["velocity"],
        current_topic=session.current_topic,
        question_count=len(session.history()),
        completed=session.is_completed,
    )


# ---------- Routes ----------
@app.get("/health")
def health():
    return {"status": "ok", "topics": len(ENGINE.graph)}


@app.post("/assessment/start", response_model=SessionResponse)
def start_assessment(body: StartSessionRequest):
    session = ENGINE.start_session(
        body.user_id,
        initial_mastery=body.initial_mastery,
        resume=body.resume,
    )
    return _session_response(session)


@app.get("/assessment/session/{user_id}/{session_id}", response_model=SessionResponse)
def get_assessment(user_id: str, session_id: str):
    return _session_response(ENGINE.get_session(user_id, session_id))


@app.get("/assessment/topics/{user_id}/{session_id}", response_model=List[TopicScoreEntry])
def rank_topics(user_id: str, session_id: str):
    session = ENGINE.get_session(user_id, session_id)
    with session.lock:
        ranked = ENGINE.topic_selector.score_topics(
            session.mastery_map(), session.attempts_by_topic()
        )
    return [TopicScoreEntry.from_score(entry.to_dict()) for entry in ranked]


@app.post("/assessment/question", response_model=QuestionResponse)
def next_question(body: QuestionRequest):
    session = ENGINE.get_session(body.user_id, body.session_id)
    question = ENGINE.next_question(session, topic=body.topic)
    return QuestionResponse(**{k: v for k, v in question.to_dict().items() if k in QuestionResponse.model_fields})


@app.post("/assessment/evaluate", response_model=EvaluationResponse)
def evaluate(body: EvaluateRequest):
    session = ENGINE.get_session(body.user_id, body.session_id)
    evaluation = ENGINE.evaluate_answer(
        session,
        topic=body.topic,
        question=body.question,
        answer=body.answer,
        difficulty=body.difficulty,
        time_spent=body.time_spent,
        language=body.language,
    )
    return EvaluationResponse(**evaluation.to_dict())


@app.post("/assessment/hint", response_model=HintResponse)
def hint(body: HintRequest):
    session = ENGINE.get_session(body.user_id, body.session_id)
    text = ENGINE.hint(session, body.topic, context=body.context, attempt=body.attempt)
    return HintResponse(topic=body.topic, hint=text)


@app.post("/assessment/complete", response_model=StatsResponse)
def complete(body: CompleteSessionRequest):
    session = ENGINE.get_session(body.user_id, body.session_id)
    return StatsResponse(**ENGINE.complete_session(session))


@app.get("/users/{user_id}/stats", response_model=StatsResponse)
def user_stats(user_id: str):
    return StatsResponse(**ENGINE.user_stats(user_id))
