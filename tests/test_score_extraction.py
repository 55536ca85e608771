import logging

import pytest

from engines.scoring import DEFAULT_SCORE, extract_score, parse_score
from engines.validation import MalformedScore


@pytest.mark.parametrize(
    "feedback, expected",
    [
        ("Score: 8/10\nGood explanation of the invariant.", 0.8),
        ("Score: 0.85 - mostly right", 0.85),
        ("Final score: 85%", 0.85),
        ("Score: 85", 0.85),
        ("Score = 7", 0.7),
        ("I'd give this 7 out of 10.", 0.7),
        ("You earned 3/5 on this one.", 0.6),
        ("Roughly 90% of the answer is right.", 0.9),
        ("Rating: 9", 0.9),
    ],
)
def test_numeric_patterns(feedback, expected):
    assert extract_score(feedback) == pytest.approx(expected)


@pytest.mark.parametrize(
    "feedback, expected",
    [
        ("Excellent reasoning throughout.", 0.95),
        ("Good attempt, the base case is right.", 0.8),
        ("The answer is satisfactory.", 0.6),
        ("This needs improvement around edge cases.", 0.4),
        ("The complexity claim is incorrect.", 0.2),
        ("That is wrong.", 0.2),
    ],
)
def test_keyword_heuristic(feedback, expected):
    assert extract_score(feedback) == pytest.approx(expected)


def test_keywords_are_checked_in_order():
    assert extract_score("Good structure, but needs improvement in naming.") == pytest.approx(0.8)


def test_numeric_score_beats_keywords():
    assert extract_score("Excellent effort! Score: 6/10") == pytest.approx(0.6)


def test_fraction_is_clamped():
    assert extract_score("Score: 12/10") == 1.0


@pytest.mark.parametrize("feedback", ["", "Thanks for your answer.", None])
def test_unparseable_feedback_defaults_to_half(feedback, caplog):
    with caplog.at_level(logging.WARNING, logger="engines.scoring"):
        assert extract_score(feedback) == DEFAULT_SCORE == 0.5

    assert any("Could not extract a score" in message for message in caplog.messages)


def test_parse_score_raises_when_nothing_matches():
    with pytest.raises(MalformedScore):
        parse_score("No verdict here.")


@pytest.mark.parametrize(
    "feedback, expected",
    [
        ("Score: 1", 0.1),
        ("Score: 1.0", 1.0),
        ("Score: 0", 0.0),
        ("Score: 10", 1.0),
        ("Rating: 1", 0.1),
        ("Score: 150", 1.0),
        ("Score: .5", 0.5),
    ],
)
def test_labelled_whole_numbers_use_ten_point_scale(feedback, expected):
    assert extract_score(feedback) == pytest.approx(expected)
