import threading

import pytest

import db
import tutor
from conftest import StubGenerator
from engines.assessment import AdaptiveAssessmentEngine
from engines.validation import (
    GenerationUnavailable,
    InvalidStateError,
    InvalidTopic,
    SessionNotFound,
    ValidationError,
)


@pytest.fixture
def engine(graph, stub_generator):
    return AdaptiveAssessmentEngine(stub_generator, graph)


def test_start_session_resumes_open_session(engine):
    first = engine.start_session("alice")
    again = engine.start_session("alice")
    fresh = engine.start_session("alice", resume=False)

    assert again is first
    assert fresh.session_id != first.session_id
    assert engine.get_session("alice", first.session_id) is first


def test_resume_returns_latest_open_session(engine):
    first = engine.start_session("alice")
    second = engine.start_session("alice", resume=False)

    resumed = engine.start_session("alice")

    assert resumed is second
    assert resumed is not first


def test_resume_matches_store_after_restart(temp_db, graph):
    warm = AdaptiveAssessmentEngine(StubGenerator(), graph, store=db)
    warm.start_session("alice")
    second = warm.start_session("alice", resume=False)

    cold = AdaptiveAssessmentEngine(StubGenerator(), graph, store=db)

    assert warm.start_session("alice").session_id == second.session_id
    assert cold.start_session("alice").session_id == second.session_id


def test_resume_skips_completed_latest_session(engine):
    first = engine.start_session("alice")
    second = engine.start_session("alice", resume=False)
    engine.complete_session(second)

    assert engine.start_session("alice") is first


def test_initial_mastery_starts_a_fresh_session(engine):
    existing = engine.start_session("carol")

    seeded = engine.start_session("carol", initial_mastery={"Arrays": 0.9})

    assert seeded is not existing
    assert seeded.current_mastery("Arrays") == pytest.approx(0.9)
    assert existing.current_mastery("Arrays") == 0.0
    assert engine.start_session("carol") is seeded


def test_unknown_session_raises(engine):
    with pytest.raises(SessionNotFound):
        engine.get_session("alice", "missing")


def test_next_question_selects_topic_and_difficulty(engine, stub_generator):
    stub_generator.queue("Question: What is the time complexity of indexing an array?")
    session = engine.start_session("alice")

    question = engine.next_question(session)

    assert question.topic == "Arrays"
    assert question.difficulty == "medium"
    assert question.content == "What is the time complexity of indexing an array?"
    assert session.current_topic == "Arrays"
    assert "Topic: Arrays" in stub_generator.prompts[-1]
    assert stub_generator.options[-1] == {"max_tokens": engine.question_max_tokens}


def test_next_question_with_forced_topic(engine, stub_generator):
    stub_generator.queue("Describe a heap.")
    session = engine.start_session("alice")

    assert engine.next_question(session, topic="Heaps").topic == "Heaps"
    with pytest.raises(InvalidTopic):
        engine.next_question(session, topic="Astrology")


def test_empty_question_counts_as_unavailable(engine, stub_generator):
    stub_generator.queue("   ")
    session = engine.start_session("alice")

    with pytest.raises(GenerationUnavailable):
        engine.next_question(session)

    assert session.current_topic is None


def test_evaluate_answer_updates_mastery(engine, stub_generator):
    stub_generator.queue("Score: 9/10\nClear and correct.")
    session = engine.start_session("alice")

    evaluation = engine.evaluate_answer(
        session,
        topic="Arrays",
        question="What is O(1) access?",
        answer="Constant time indexing",
        difficulty="hard",
        time_spent=30,
    )

    assert evaluation.score == pytest.approx(0.9)
    assert evaluation.correct is True
    assert evaluation.update.mastery_after == pytest.approx(0.15 * 0.8 * 1.4)
    assert evaluation.to_dict()["streak"] == 1
    assert session.current_mastery("Arrays") == pytest.approx(0.168)
    assert session.history("Arrays")[0].feedback.startswith("Score: 9/10")


def test_feedback_without_score_uses_default(engine, stub_generator):
    stub_generator.queue("Thanks for answering.")
    session = engine.start_session("alice")

    evaluation = engine.evaluate_answer(
        session, topic="Arrays", question="Q", answer="A", difficulty="medium"
    )

    assert evaluation.score == 0.5
    assert session.current_mastery("Arrays") == pytest.approx(0.05 * 0.8)


def test_generation_failure_leaves_session_unchanged(engine, stub_generator):
    session = engine.start_session("alice")
    stub_generator.queue("Score: 7/10")
    engine.evaluate_answer(session, topic="Arrays", question="Q1", answer="A1", difficulty="easy")
    before = session.to_dict()

    stub_generator.queue(GenerationUnavailable("backend down"))
    with pytest.raises(GenerationUnavailable):
        engine.evaluate_answer(session, topic="Arrays", question="Q2", answer="A2", difficulty="easy")

    assert session.to_dict() == before


def test_evaluate_rejects_bad_input_before_calling_backend(engine, stub_generator):
    session = engine.start_session("alice")

    with pytest.raises(InvalidTopic):
        engine.evaluate_answer(session, topic="Nope", question="Q", answer="A", difficulty="easy")
    with pytest.raises(ValidationError):
        engine.evaluate_answer(session, topic="Arrays", question="Q", answer="A", difficulty="extreme")

    assert stub_generator.prompts == []


def test_completed_session_rejects_evaluation(engine, stub_generator):
    session = engine.start_session("alice")
    engine.complete_session(session)

    with pytest.raises(InvalidStateError):
        engine.evaluate_answer(session, topic="Arrays", question="Q", answer="A", difficulty="easy")
    with pytest.raises(InvalidStateError):
        engine.next_question(session)

    assert stub_generator.prompts == []


def test_session_lock_is_released_during_generation(graph):
    observed = []
    holder = {}

    def reply(prompt):
        session = holder["session"]

        def probe():
            acquired = session.lock.acquire(blocking=False)
            observed.append(acquired)
            if acquired:
                session.lock.release()

        thread = threading.Thread(target=probe)
        thread.start()
        thread.join()
        return "Score: 10/10"

    engine = AdaptiveAssessmentEngine(StubGenerator(reply), graph)
    holder["session"] = engine.start_session("alice")

    engine.evaluate_answer(holder["session"], topic="Arrays", question="Q", answer="A", difficulty="easy")

    assert observed == [True]


def test_difficulty_rises_after_strong_answers(engine, stub_generator):
    session = engine.start_session("alice")
    for _ in range(3):
        stub_generator.queue("Score: 10/10")
        engine.evaluate_answer(session, topic="Arrays", question="Q", answer="A", difficulty="medium")

    assert engine.choose_difficulty(session, "Arrays").difficulty == "hard"


def test_hint_falls_back_when_backend_is_down(engine, stub_generator):
    session = engine.start_session("alice")
    stub_generator.queue(GenerationUnavailable("offline"))

    text = engine.hint(session, "Graphs", attempt=1)

    assert text == tutor.fallback_hint("Graphs", 1)


def test_hint_uses_backend_text(engine, stub_generator):
    session = engine.start_session("alice")
    stub_generator.queue("  Start from the root node.  ")

    assert engine.hint(session, "Trees") == "Start from the root node."


def test_complete_session_returns_stats(engine, stub_generator):
    session = engine.start_session("alice")
    stub_generator.queue("Score: 9/10", "Score: 2/10")
    engine.evaluate_answer(session, topic="Arrays", question="Q1", answer="A", difficulty="medium", time_spent=40)
    engine.evaluate_answer(session, topic="Recursion", question="Q2", answer="A", difficulty="medium", time_spent=80)

    stats = engine.complete_session(session)

    assert stats["total_questions_answered"] == 2
    assert stats["correct_answers"] == 1
    assert stats["accuracy"] == 50.0
    assert stats["avg_time_per_question"] == "1m 0s"
    assert session.is_completed
    assert engine.start_session("alice") is not session


def test_sessions_are_persisted_and_reloaded(temp_db, graph):
    generator = StubGenerator("Score: 8/10")
    engine = AdaptiveAssessmentEngine(generator, graph, store=db)
    session = engine.start_session("bob")
    engine.evaluate_answer(session, topic="Arrays", question="Q", answer="A", difficulty="medium")

    reloaded_engine = AdaptiveAssessmentEngine(StubGenerator(), graph, store=db)
    restored = reloaded_engine.get_session("bob", session.session_id)

    assert restored is not session
    assert restored.current_mastery("Arrays") == pytest.approx(session.current_mastery("Arrays"))
    assert len(restored.history()) == 1
    assert reloaded_engine.start_session("bob").session_id == session.session_id
    assert reloaded_engine.user_stats("bob")["total_questions_answered"] == 1
