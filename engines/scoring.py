"""Extract a numeric score from free-form evaluation feedback."""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Pattern, Tuple

from engines.validation import MalformedScore

_LOGGER = logging.getLogger(__name__)

DEFAULT_SCORE = 0.5

_NUMBER = r"(\d+(?:\.\d+)?|\.\d+)"


def _normalise(value: float) -> float:
    """Map 0-1, 0-10 and 0-100 scales onto [0, 1]."""

    if value <= 1.0:
        return max(0.0, value)
    if value <= 10.0:
        return value / 10.0
    if value <= 100.0:
        return value / 100.0
    return 1.0


def _from_fraction(match: "re.Match[str]") -> Optional[float]:
    numerator = float(match.group(1))
    denominator = float(match.group(2))
    if denominator <= 0:
        return None
    return max(0.0, min(1.0, numerator / denominator))


def _from_percent(match: "re.Match[str]") -> Optional[float]:
    return max(0.0, min(1.0, float(match.group(1)) / 100.0))


def _from_scaled(match: "re.Match[str]") -> Optional[float]:
    """Unscaled label such as ``Score: 7`` or ``Rating: 0.7``.

    Whole numbers are read on the 0-10 scale (so ``Score: 1`` is 0.1) and on
    0-100 above ten. Decimals up to 1 are taken as already normalised.
    """

    raw = match.group(1)
    value = float(raw)
    if "." in raw:
        return _normalise(value)
    if value <= 10.0:
        return value / 10.0
    return min(1.0, value / 100.0)


# Ordered: the first pattern that yields a value wins.
SCORE_PATTERNS: List[Tuple[str, Pattern[str], Callable[["re.Match[str]"], Optional[float]]]] = [
    (
        "labelled_fraction",
        re.compile(rf"\bscore\s*(?:of|is|:|=)?\s*{_NUMBER}\s*(?:/|out of)\s*{_NUMBER}", re.IGNORECASE),
        _from_fraction,
    ),
    (
        "labelled_percent",
        re.compile(rf"\bscore\s*(?:of|is|:|=)?\s*{_NUMBER}\s*%", re.IGNORECASE),
        _from_percent,
    ),
    (
        "labelled_value",
        re.compile(rf"\bscore\s*(?:of|is|:|=)\s*{_NUMBER}", re.IGNORECASE),
        _from_scaled,
    ),
    (
        "fraction",
        re.compile(rf"{_NUMBER}\s*(?:/|out of)\s*(100|10|5|1)\b", re.IGNORECASE),
        _from_fraction,
    ),
    (
        "percent",
        re.compile(rf"{_NUMBER}\s*%"),
        _from_percent,
    ),
    (
        "rating",
        re.compile(rf"\b(?:rating|grade|mark)\s*(?:of|is|:|=)?\s*{_NUMBER}", re.IGNORECASE),
        _from_scaled,
    ),
]

# Ordered keyword heuristic used when no numeric pattern matches.
KEYWORD_SCORES: List[Tuple[Pattern[str], float]] = [
    (re.compile(r"\bexcellent\b", re.IGNORECASE), 0.95),
    (re.compile(r"\bgood\b", re.IGNORECASE), 0.8),
    (re.compile(r"\bsatisfactory\b", re.IGNORECASE), 0.6),
    (re.compile(r"\bneeds\s+improvement\b", re.IGNORECASE), 0.4),
    (re.compile(r"\b(?:incorrect|wrong)\b", re.IGNORECASE), 0.2),
]


def _numeric_score(text: str) -> Optional[float]:
    for name, pattern, convert in SCORE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        value = convert(match)
        if value is not None:
            _LOGGER.debug("score pattern %s matched %r -> %.3f", name, match.group(0), value)
            return value
    return None


def _keyword_score(text: str) -> Optional[float]:
    for pattern, value in KEYWORD_SCORES:
        if pattern.search(text):
            return value
    return None


def parse_score(feedback_text: str) -> float:
    """Return the score in ``feedback_text`` or raise ``MalformedScore``."""

    text = feedback_text or ""
    score = _numeric_score(text)
    if score is None:
        score = _keyword_score(text)
    if score is None:
        raise MalformedScore("No score or grading keyword found in feedback")
    return score


def extract_score(feedback_text: str) -> float:
    """Score in [0, 1]; falls back to ``DEFAULT_SCORE`` when nothing matches."""

    try:
        return parse_score(feedback_text)
    except MalformedScore:
        _LOGGER.warning("Could not extract a score from feedback; using %.1f", DEFAULT_SCORE)
        return DEFAULT_SCORE


__all__ = ["DEFAULT_SCORE", "KEYWORD_SCORES", "SCORE_PATTERNS", "extract_score", "parse_score"]
