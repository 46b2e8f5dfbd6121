"""LLM-as-a-judge evaluation of tutoring session transcripts.

The evaluator sends a rubric plus the session transcript to an LLM provider,
asks for a JSON verdict, and normalises it into an ``EvaluationResult``:

    {
        "quality_score": 1-5 integer,
        "strengths": ["..."],
        "areas_for_improvement": ["..."],
        "risk_tags": ["rushed_pacing", ...]
    }

Failures never raise out of ``evaluate_session``; they come back as an
``EvaluationResponse`` with ``success=False`` so batch callers can count them.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import config
from .providers.base import LLMProvider

_logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert tutor quality evaluator for an online tutoring platform. Your role is to assess tutoring session transcripts and provide actionable feedback.

EVALUATION CRITERIA (use these to determine the quality score):

Score 5 - Excellent:
- Tutor demonstrates exceptional patience and clarity
- Actively checks for student understanding throughout
- Adjusts explanations based on student responses
- Creates engaging, interactive learning environment
- Student shows clear progress and understanding

Score 4 - Good:
- Tutor is generally clear and helpful
- Checks understanding at key points
- Responds appropriately to student questions
- Good rapport building
- Student shows understanding of most concepts

Score 3 - Adequate:
- Basic explanations provided
- Some checking for understanding
- Occasional missed opportunities for clarification
- Neutral or minimal rapport building
- Student understands some concepts but may have lingering questions

Score 2 - Below Average:
- Explanations are unclear or rushed
- Rarely checks for student understanding
- May ignore student questions or confusion
- Little rapport building or patience shown
- Student frequently seems confused

Score 1 - Poor:
- Tutor is unprepared or disengaged
- No checking for understanding
- Ignores student needs
- Creates negative learning environment
- Student shows no progress or increased confusion

RISK TAGS to consider:
- "rushed_pacing" - Tutor moves too quickly through material
- "ignored_student_questions" - Tutor doesn't address student questions
- "poor_explanation_quality" - Explanations are unclear or confusing
- "low_student_engagement" - Student is not actively participating
- "excellent_rapport_building" - Tutor builds great connection with student
- "strong_scaffolding" - Tutor breaks down concepts effectively
- "adaptive_teaching" - Tutor adjusts to student's level
- "missed_teachable_moments" - Tutor misses opportunities to deepen understanding
- "unprepared_tutor" - Tutor seems unfamiliar with material
- "excellent_student_engagement" - Student is actively learning and participating

For FIRST SESSIONS, pay extra attention to:
- Initial rapport building
- Assessment of student's current level
- Setting expectations for future sessions
- Making the student feel comfortable

IMPORTANT: You MUST respond with valid JSON only. No explanations or text outside the JSON."""


@dataclass
class SessionMetadata:
    """Session facts included in the evaluation prompt."""

    session_id: str
    subject: str
    is_first_session: bool
    student_rating: Optional[int]
    student_feedback: Optional[str]
    status: str
    duration_minutes: int


@dataclass
class EvaluationResult:
    quality_score: int
    strengths: List[str] = field(default_factory=list)
    areas_for_improvement: List[str] = field(default_factory=list)
    risk_tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quality_score": self.quality_score,
            "strengths": list(self.strengths),
            "areas_for_improvement": list(self.areas_for_improvement),
            "risk_tags": list(self.risk_tags),
        }


@dataclass
class EvaluationResponse:
    """Outcome of one ``evaluate_session`` call.

    Attributes:
        success: Whether a valid evaluation was produced
        evaluation: The normalised evaluation when successful
        error: Error message from the final failed attempt
        cached: True when the evaluation came from the in-process cache
        attempts: Provider calls made for this response (0 when cached)
    """

    success: bool
    evaluation: Optional[EvaluationResult] = None
    error: Optional[str] = None
    cached: bool = False
    attempts: int = 0


class EvaluationFormatError(ValueError):
    """Raised when the provider reply cannot be turned into an evaluation."""


def build_user_prompt(metadata: SessionMetadata, transcript: str) -> str:
    """Render the per-session prompt."""
    rating = f"{metadata.student_rating}/5" if metadata.student_rating is not None else "Not provided"
    feedback_line = (
        f'- Student Feedback: "{metadata.student_feedback}"\n' if metadata.student_feedback else ""
    )
    return (
        "Evaluate this tutoring session transcript and provide your assessment.\n\n"
        "SESSION METADATA:\n"
        f"- Subject: {metadata.subject}\n"
        f"- First Session: {'Yes' if metadata.is_first_session else 'No'}\n"
        f"- Duration: {metadata.duration_minutes} minutes\n"
        f"- Student Rating Given: {rating}\n"
        f"{feedback_line}"
        "\nTRANSCRIPT:\n"
        f"{transcript}\n\n"
        "Provide your evaluation in this exact JSON format:\n"
        "{\n"
        '  "quality_score": <number 1-5>,\n'
        '  "strengths": ["<strength 1>", "<strength 2>", ...],\n'
        '  "areas_for_improvement": ["<area 1>", "<area 2>", ...],\n'
        '  "risk_tags": ["<tag 1>", "<tag 2>", ...]\n'
        "}\n\n"
        "Response (JSON only):"
    )


def _normalize_string_list(value: Any, field_name: str) -> List[str]:
    if not isinstance(value, list):
        _logger.warning("Evaluation field %s is not a list, defaulting to empty", field_name)
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def parse_evaluation(content: str) -> EvaluationResult:
    """Validate a provider reply and normalise it into an ``EvaluationResult``.

    Raises:
        EvaluationFormatError: Empty content, invalid JSON, or a missing or
            out-of-range ``quality_score``.
    """
    if not content or not content.strip():
        raise EvaluationFormatError("Empty response from provider")
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise EvaluationFormatError(f"Failed to parse JSON response: {exc}") from exc
    if not isinstance(data, dict):
        raise EvaluationFormatError("Response is not a JSON object")

    raw_score = data.get("quality_score")
    try:
        if isinstance(raw_score, bool):
            raise TypeError("boolean score")
        score = float(raw_score)
    except (TypeError, ValueError) as exc:
        raise EvaluationFormatError(f"Invalid quality_score: {raw_score!r}") from exc
    if not 1 <= score <= 5:
        raise EvaluationFormatError(f"Invalid quality_score: {raw_score!r}")

    return EvaluationResult(
        quality_score=int(round(score)),
        strengths=_normalize_string_list(data.get("strengths"), "strengths"),
        areas_for_improvement=_normalize_string_list(
            data.get("areas_for_improvement"), "areas_for_improvement"
        ),
        risk_tags=_normalize_string_list(data.get("risk_tags"), "risk_tags"),
    )


class SessionEvaluator:
    """Evaluates transcripts with retry and an idempotency cache keyed by session."""

    def __init__(
        self,
        provider: LLMProvider,
        model: Optional[str] = None,
        *,
        max_retries: Optional[int] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.model = model or config.EVALUATION_MODEL
        self.max_retries = max(1, max_retries if max_retries is not None else config.EVALUATION_MAX_RETRIES)
        self.temperature = temperature if temperature is not None else config.EVALUATION_TEMPERATURE
        self.max_tokens = max_tokens if max_tokens is not None else config.EVALUATION_MAX_TOKENS
        self._sleep = sleep
        self._cache: Dict[str, EvaluationResult] = {}
        self._cache_lock = Lock()

    def evaluate_session(self, metadata: SessionMetadata, transcript: str) -> EvaluationResponse:
        """Evaluate one session transcript; never raises."""
        start = time.time()
        _logger.info(
            "Evaluating session %s (subject=%s first_session=%s duration=%smin)",
            metadata.session_id,
            metadata.subject,
            metadata.is_first_session,
            metadata.duration_minutes,
        )

        with self._cache_lock:
            cached = self._cache.get(metadata.session_id)
        if cached is not None:
            _logger.info("Using cached evaluation for session %s", metadata.session_id)
            return EvaluationResponse(success=True, evaluation=cached, cached=True)

        prompt = build_user_prompt(metadata, transcript)
        evaluation, attempts, error = self._call_with_retry(prompt, metadata.session_id)
        if evaluation is None:
            _logger.error("Evaluation failed for session %s: %s", metadata.session_id, error)
            return EvaluationResponse(success=False, error=error, attempts=attempts)

        with self._cache_lock:
            self._cache[metadata.session_id] = evaluation

        _logger.info(
            "Evaluation complete for session %s in %.0fms (score=%d/5 tags=%s)",
            metadata.session_id,
            (time.time() - start) * 1000,
            evaluation.quality_score,
            ", ".join(evaluation.risk_tags) or "none",
        )
        return EvaluationResponse(success=True, evaluation=evaluation, attempts=attempts)

    def _call_with_retry(
        self, prompt: str, session_id: str
    ) -> Tuple[Optional[EvaluationResult], int, Optional[str]]:
        json_mode = self.provider.supports_json_mode()

        last_error = "Max retries exceeded"
        for attempt in range(1, self.max_retries + 1):
            try:
                completion = self.provider.complete(
                    prompt,
                    model=self.model,
                    system=SYSTEM_PROMPT,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    json_mode=json_mode,
                )
                return parse_evaluation(completion.content), attempt, None
            except Exception as exc:  # pylint: disable=broad-except
                last_error = str(exc) or exc.__class__.__name__
                _logger.warning(
                    "Evaluation attempt %d/%d failed for session %s: %s",
                    attempt,
                    self.max_retries,
                    session_id,
                    last_error,
                )
                if attempt < self.max_retries:
                    delay = min(2 ** attempt, 8)  # Exponential backoff, max 8s
                    _logger.info("Retrying session %s in %ss", session_id, delay)
                    self._sleep(delay)

        return None, self.max_retries, last_error

    def clear_cache(self) -> None:
        """Drop every cached evaluation so sessions can be re-evaluated."""
        with self._cache_lock:
            self._cache.clear()

    def clear_session_cache(self, session_id: str) -> None:
        with self._cache_lock:
            self._cache.pop(session_id, None)


_evaluator: Optional[SessionEvaluator] = None


def get_session_evaluator() -> SessionEvaluator:
    """Return the shared evaluator backed by the configured OpenAI provider."""
    global _evaluator  # noqa: PLW0603 - module-level cache is intentional
    if _evaluator is None:
        from .providers.openai import OpenAIProvider

        _evaluator = SessionEvaluator(OpenAIProvider())
    return _evaluator
