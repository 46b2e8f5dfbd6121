"""Batch evaluation of transcribed sessions that have no AI evaluation yet."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from . import config
from .evaluator import SessionEvaluator, SessionMetadata
from .storage import DatabaseStorage, PendingEvaluation

LOGGER = logging.getLogger(__name__)


@dataclass
class EvaluationRunSummary:
    """Counts and timing for one evaluation run."""

    found: int = 0
    evaluated: int = 0
    failed: int = 0
    duration_seconds: float = 0.0
    failed_session_ids: List[str] = field(default_factory=list)
    score_distribution: Dict[int, int] = field(default_factory=dict)

    @property
    def rate_per_second(self) -> float:
        return self.evaluated / self.duration_seconds if self.duration_seconds > 0 else 0.0


def _metadata_for(pending: PendingEvaluation) -> SessionMetadata:
    return SessionMetadata(
        session_id=pending.session_id,
        subject=pending.subject,
        is_first_session=pending.is_first_session,
        student_rating=pending.student_rating,
        student_feedback=pending.student_feedback,
        status=pending.status,
        duration_minutes=pending.duration_minutes,
    )


def _evaluate_and_store(
    storage: DatabaseStorage,
    evaluator: SessionEvaluator,
    pending: PendingEvaluation,
) -> Optional[str]:
    """Evaluate one session and persist the result; returns an error message on failure."""
    try:
        response = evaluator.evaluate_session(_metadata_for(pending), pending.transcript_text)
        if not response.success or response.evaluation is None:
            return response.error or "Unknown error"
        evaluation = response.evaluation
        storage.store_evaluation(
            pending.session_id,
            quality_score=evaluation.quality_score,
            strengths=evaluation.strengths,
            areas_for_improvement=evaluation.areas_for_improvement,
            risk_tags=evaluation.risk_tags,
        )
    except Exception as exc:  # pylint: disable=broad-except
        LOGGER.exception("Failed to evaluate or store session %s", pending.session_id)
        return str(exc) or exc.__class__.__name__
    return None


def run_evaluations(
    storage: DatabaseStorage,
    evaluator: SessionEvaluator,
    *,
    batch_size: Optional[int] = None,
    max_evaluations: Optional[int] = None,
    pause_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> EvaluationRunSummary:
    """Evaluate pending transcripts in parallel batches.

    Args:
        storage: Source of pending sessions and sink for evaluations.
        evaluator: Evaluator used for every session.
        batch_size: Sessions evaluated concurrently per batch.
        max_evaluations: Upper bound on sessions loaded for this run.
        pause_seconds: Pause between batches, for provider rate limits.
        sleep: Sleep function (injectable for tests).
    """
    size = max(1, batch_size if batch_size is not None else config.EVALUATION_BATCH_SIZE)
    limit = max_evaluations if max_evaluations is not None else config.EVALUATION_MAX_SESSIONS
    pause = pause_seconds if pause_seconds is not None else config.EVALUATION_BATCH_PAUSE_SECONDS

    summary = EvaluationRunSummary()
    LOGGER.info("Fetching sessions with transcripts to evaluate (limit=%d)", limit)
    pending = storage.list_pending_evaluations(limit)
    summary.found = len(pending)
    LOGGER.info("Found %d sessions to evaluate", summary.found)

    if not pending:
        LOGGER.warning("No sessions found to evaluate; generate transcripts first")
        summary.score_distribution = storage.quality_score_counts()
        return summary

    # Stored rows, not the in-process cache, decide what gets evaluated.
    evaluator.clear_cache()

    start = time.time()
    total_batches = (len(pending) + size - 1) // size
    with ThreadPoolExecutor(max_workers=size, thread_name_prefix="evaluations") as pool:
        for batch_index in range(total_batches):
            batch = pending[batch_index * size:(batch_index + 1) * size]
            LOGGER.info("Processing batch %d/%d", batch_index + 1, total_batches)

            errors = list(pool.map(lambda item: _evaluate_and_store(storage, evaluator, item), batch))
            for item, error in zip(batch, errors):
                if error is None:
                    summary.evaluated += 1
                else:
                    summary.failed += 1
                    summary.failed_session_ids.append(item.session_id)
                    LOGGER.error("Evaluation failed for session %s: %s", item.session_id, error)

            LOGGER.info(
                "Batch %d complete: %d evaluated, %d failed",
                batch_index + 1,
                summary.evaluated,
                summary.failed,
            )
            if batch_index + 1 < total_batches and pause > 0:
                sleep(pause)

    summary.duration_seconds = time.time() - start
    summary.score_distribution = storage.quality_score_counts()
    return summary


def log_evaluation_summary(summary: EvaluationRunSummary) -> None:
    """Log the totals and the stored score distribution."""
    LOGGER.info(
        "Evaluation summary: evaluated=%d failed=%d duration=%.1fs rate=%.1f sessions/sec",
        summary.evaluated,
        summary.failed,
        summary.duration_seconds,
        summary.rate_per_second,
    )
    total = sum(summary.score_distribution.values())
    if not total:
        return
    for score in sorted(summary.score_distribution):
        count = summary.score_distribution[score]
        bar = "#" * round(count / total * 20)
        LOGGER.info("Score %d: %-20s %d (%.1f%%)", score, bar, count, count / total * 100)
