"""Prompt construction and the text-generation backend client."""

import json
import logging
import os
import re
import time
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence

import requests

from engines.validation import GenerationUnavailable
from env_validation import DEFAULT_LLM_URL, get_env_bool, safe_float, safe_int

logger = logging.getLogger(__name__)
_LLM_LOGGER = logging.getLogger("mastery.llm")

# --------- Model/endpoint from environment ---------
MODEL_ID = os.getenv("MODEL_ID", "llama3.1:8b")
LLM_URL = os.getenv("LLM_URL", DEFAULT_LLM_URL)
SEND_MAX_TOKENS = get_env_bool("SEND_MAX_TOKENS", True)

SYSTEM_TUTOR = (
    "You are a patient computer science tutor running an adaptive assessment. "
    "Keep questions self-contained and answerable in a few sentences or a short "
    "code snippet. When grading, be fair and specific."
)

DIFFICULTY_GUIDANCE = {
    "easy": "Ask about a single core definition or a direct application of one idea.",
    "medium": "Ask the learner to apply or compare concepts in a small scenario.",
    "hard": "Ask for analysis, trade-offs or an algorithm with its complexity.",
}

FALLBACK_HINTS = (
    "Think about the core {topic} concepts first.",
    "Consider how this {topic} problem relates to previous examples.",
    "Break this {topic} challenge into smaller, manageable steps.",
    "Review the fundamental {topic} principles that apply here.",
)


class TextGenerator(Protocol):
    """Anything that turns a prompt into text."""

    def generate_text(self, prompt: str, options: Optional[Mapping[str, Any]] = None) -> str:
        ...


def _json_log(event: str, payload: Dict[str, Any]) -> None:
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
    _LLM_LOGGER.info(message)


# --------- Prompt builders ---------
def build_question_prompt(
    topic: str,
    difficulty: str,
    mastery: float,
    previous_questions: Optional[Sequence[str]] = None,
) -> str:
    """Compose the prompt asking the backend for one assessment question."""

    guidance = DIFFICULTY_GUIDANCE.get(difficulty, DIFFICULTY_GUIDANCE["medium"])
    lines = [
        f"Topic: {topic}",
        f"Difficulty: {difficulty}",
        f"Learner mastery estimate: {mastery:.2f} (0 = novice, 1 = expert)",
        guidance,
    ]
    recent = [q.strip() for q in (previous_questions or []) if q and q.strip()]
    if recent:
        lines.append("Do not repeat any of these earlier questions:")
        lines.extend(f"- {q}" for q in recent[-5:])
    lines.append("Reply with the question text only, without the answer.")
    return "\n".join(lines)


def build_evaluation_prompt(
    topic: str,
    question: str,
    answer: str,
    difficulty: str,
    language: str = "en",
) -> str:
    """Compose the grading prompt; the reply must carry an explicit score."""

    return "\n".join(
        [
            f"Evaluate the learner's answer to a {difficulty} question about {topic}.",
            f"Question: {question}",
            f"Learner answer: {answer or '(no answer)'}",
            "Start your reply with a line 'Score: X/10'.",
            "Then explain what was correct, what was missing, and one concrete next step.",
            f"Write the feedback in the language with code '{language}'.",
        ]
    )


def build_hint_prompt(topic: str, mastery: float, context: str, attempt: int) -> str:
    depth = "a gentle nudge" if attempt <= 0 else "a more specific hint" if attempt == 1 else "a worked first step"
    return "\n".join(
        [
            f"The learner is stuck on a {topic} problem (mastery {mastery:.2f}).",
            f"Context: {context or '(none)'}",
            f"Give {depth} without revealing the full answer. One or two sentences.",
        ]
    )


def fallback_hint(topic: str, attempt: int = 0) -> str:
    template = FALLBACK_HINTS[max(0, int(attempt)) % len(FALLBACK_HINTS)]
    return template.format(topic=topic)


_QUESTION_PREFIX = re.compile(r"^\s*(?:\*\*)?(?:question)\s*[:.\-]\s*(?:\*\*)?\s*", re.IGNORECASE)


def clean_question_text(text: str) -> str:
    """Strip wrapper noise (fences, ``Question:`` prefixes) from generated text."""

    cleaned = (text or "").strip()
    if cleaned.startswith("```") and cleaned.endswith("```") and len(cleaned) >= 6:
        cleaned = cleaned[3:-3].strip()
    cleaned = _QUESTION_PREFIX.sub("", cleaned, count=1)
    return cleaned.strip()


# --------- Backend client ---------
class LLMClient:
    """Blocking client for an OpenAI-compatible chat-completions endpoint.

    Every failure surfaces as ``GenerationUnavailable``; retrying is left to
    the caller.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        model_id: Optional[str] = None,
        timeout: Optional[int] = None,
        system_prompt: str = SYSTEM_TUTOR,
    ) -> None:
        self.url = url or LLM_URL
        self.model_id = model_id or MODEL_ID
        self.timeout = timeout if timeout is not None else safe_int("LLM_TIMEOUT", 60)
        self.system_prompt = system_prompt

    @staticmethod
    def base_params() -> Dict[str, float]:
        """Only OpenAI-style fields that local servers understand."""
        return {
            "temperature": safe_float("LLM_TEMPERATURE", 0.2),
            "top_p": safe_float("LLM_TOP_P", 0.95),
        }

    def _messages(self, prompt: str) -> list:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    def generate_text(self, prompt: str, options: Optional[Mapping[str, Any]] = None) -> str:
        options = dict(options or {})
        max_tokens = options.pop("max_tokens", None)
        messages = self._messages(prompt)
        payload: Dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            **self.base_params(),
            **options,
        }
        if max_tokens is not None and SEND_MAX_TOKENS:
            payload["max_tokens"] = int(max_tokens)

        start = time.perf_counter()
        status = "error"
        try:
            try:
                response = requests.post(self.url, json=payload, timeout=self.timeout)
                if response.status_code == 400:
                    # Fallback: some servers reject sampling parameters
                    minimal: Dict[str, Any] = {"model": self.model_id, "messages": messages}
                    if max_tokens is not None and SEND_MAX_TOKENS:
                        minimal["max_tokens"] = int(max_tokens)
                    response = requests.post(self.url, json=minimal, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
            except requests.HTTPError as exc:
                code = exc.response.status_code if exc.response is not None else "?"
                body = exc.response.text[:300] if exc.response is not None else ""
                raise GenerationUnavailable(f"LLM-HTTP {code}: {body}") from exc
            except requests.RequestException as exc:
                raise GenerationUnavailable(f"LLM error: {exc}") from exc
            except ValueError as exc:
                raise GenerationUnavailable(f"LLM returned invalid JSON: {exc}") from exc

            content = self._extract_content(data)
            status = "ok"
            return content
        finally:
            _json_log(
                "llm_call",
                {
                    "model_id": self.model_id,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                    "status": status,
                    "prompt_chars": len(prompt),
                },
            )

    @staticmethod
    def _extract_content(data: Any) -> str:
        try:
            return str(data["choices"][0]["message"]["content"])
        except (KeyError, IndexError, TypeError):
            pass
        try:
            return str(data["choices"][0]["text"])
        except (KeyError, IndexError, TypeError):
            raise GenerationUnavailable(f"Unexpected LLM response: {str(data)[:300]}") from None


__all__ = [
    "FALLBACK_HINTS",
    "LLMClient",
    "TextGenerator",
    "build_evaluation_prompt",
    "build_hint_prompt",
    "build_question_prompt",
    "clean_question_text",
    "fallback_hint",
]
