"""Error types and validation utilities for the adaptive mastery engine."""

import math
from typing import Any, Iterable, Optional

DIFFICULTY_TIERS = ("easy", "medium", "hard")


class AdaptiveEngineError(Exception):
    """Base class for engine errors."""
    pass


class ValidationError(AdaptiveEngineError, ValueError):
    """Raised when an engine input fails validation."""
    pass


class InvalidTopic(ValidationError):
    """Raised when a topic is not part of the catalog."""

    def __init__(self, topic: str, catalog: Optional[Iterable[str]] = None):
        self.topic = topic
        message = f"Unknown topic: {topic!r}"
        if catalog is not None:
            known = ", ".join(sorted(catalog))
            message += f" (known topics: {known})"
        super().__init__(message)


class InvalidStateError(AdaptiveEngineError):
    """Raised when an operation targets a completed session."""
    pass


class SessionNotFound(AdaptiveEngineError, LookupError):
    """Raised when no session exists for the given identifiers."""
    pass


class GenerationUnavailable(AdaptiveEngineError):
    """Raised when the text-generation backend cannot produce a response."""
    pass


class MalformedScore(AdaptiveEngineError):
    """Raised when no score can be extracted from feedback text."""
    pass


class CatalogConfigError(AdaptiveEngineError):
    """Raised at load time when the topic catalog is misconfigured."""
    pass


def _as_float(value: Any, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"Field {field} has wrong type. Expected float, got {type(value).__name__}"
        )
    number = float(value)
    if math.isnan(number):
        raise ValidationError(f"Field {field} must not be NaN")
    return number


def validate_score(score: Any) -> float:
    """Return ``score`` as a float, raising when outside [0, 1]."""
    number = _as_float(score, "score")
    if not (0 <= number <= 1):
        raise ValidationError("Score must be between 0 and 1")
    return number


def validate_mastery(mastery: Any) -> float:
    number = _as_float(mastery, "mastery")
    if not (0 <= number <= 1):
        raise ValidationError("Mastery must be between 0 and 1")
    return number


def validate_difficulty(difficulty: Any) -> str:
    """Normalise a difficulty label to one of the known tiers."""
    if not isinstance(difficulty, str):
        raise ValidationError(
            f"Field difficulty has wrong type. Expected str, got {type(difficulty).__name__}"
        )
    normalized = difficulty.strip().lower()
    if normalized not in DIFFICULTY_TIERS:
        raise ValidationError(
            f"Invalid difficulty value. Must be one of: {', '.join(DIFFICULTY_TIERS)}"
        )
    return normalized


def validate_time_spent(time_spent: Any) -> float:
    if time_spent is None:
        return 0.0
    number = _as_float(time_spent, "time_spent")
    if number < 0:
        raise ValidationError("Time spent must not be negative")
    return number
