"""Batch driver that recomputes every tutor's risk metrics snapshot.

Each run reads the tutor roster, scores every tutor over the trailing window
ending at ``now`` and upserts the resulting snapshot. Tutors are independent:
one tutor's read or write failure is logged and counted, and the rest of the
run carries on. Re-running with the same data and the same ``now`` rewrites
identical snapshots.
"""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from . import config
from .metrics.engine import (
    EvaluationRecord,
    MetricsConfig,
    RiskLabel,
    SessionRecord,
    TutorMetricsSnapshot,
    compute_tutor_metrics,
)

LOGGER = logging.getLogger(__name__)

_SCORED = "scored"
_SKIPPED = "skipped"
_FAILED = "failed"


class MetricsStore(Protocol):
    """Persistence calls the analytics run depends on."""

    def list_tutor_ids(self) -> List[str]: ...

    def fetch_sessions_in_window(self, tutor_id: str, since: datetime, until: datetime) -> List[SessionRecord]: ...

    def fetch_evaluations(self, session_ids: Sequence[str]) -> List[EvaluationRecord]: ...

    def upsert_tutor_metrics(self, snapshot: TutorMetricsSnapshot) -> None: ...


class AnalyticsRunError(RuntimeError):
    """Raised when the run cannot start, e.g. the tutor roster is unreadable."""


@dataclass
class AnalyticsRunSummary:
    """Outcome of one analytics run.

    Attributes:
        started_at: The ``now`` the run scored against
        window_days: Trailing window used
        tutors_total: Tutors on the roster
        tutors_scored: Tutors whose snapshot was written
        tutors_skipped: Tutors with no sessions in the window
        failed_tutor_ids: Tutors whose read or write failed
        snapshots: Snapshots written this run, in roster order
    """

    started_at: datetime
    window_days: int
    tutors_total: int = 0
    tutors_scored: int = 0
    tutors_skipped: int = 0
    failed_tutor_ids: List[str] = field(default_factory=list)
    snapshots: List[TutorMetricsSnapshot] = field(default_factory=list)

    @property
    def failures(self) -> int:
        return len(self.failed_tutor_ids)

    def churn_distribution(self) -> Dict[str, int]:
        counts = Counter(s.churn_risk_label for s in self.snapshots)
        return {label.value: counts.get(label, 0) for label in RiskLabel}

    def no_show_distribution(self) -> Dict[str, int]:
        counts = Counter(s.no_show_risk_label for s in self.snapshots)
        return {label.value: counts.get(label, 0) for label in RiskLabel}

    def flag_counts(self) -> Dict[str, int]:
        return {
            "high_rescheduler": sum(1 for s in self.snapshots if s.high_rescheduler_flag),
            "poor_first_session": sum(1 for s in self.snapshots if s.poor_first_session_flag),
        }

    def average_rates(self) -> Dict[str, float]:
        if not self.snapshots:
            return {"reschedule_rate": 0.0, "no_show_rate": 0.0, "first_session_dropout_rate": 0.0}
        count = len(self.snapshots)
        return {
            "reschedule_rate": sum(s.tutor_reschedule_rate for s in self.snapshots) / count,
            "no_show_rate": sum(s.tutor_no_show_rate for s in self.snapshots) / count,
            "first_session_dropout_rate": sum(s.first_session_dropout_rate for s in self.snapshots) / count,
        }


def score_tutor(
    store: MetricsStore,
    tutor_id: str,
    thresholds: MetricsConfig,
    now: datetime,
) -> Optional[TutorMetricsSnapshot]:
    """Read one tutor's window, compute the snapshot and upsert it.

    Returns ``None`` (and writes nothing) when the tutor had no sessions in the
    window. Storage errors propagate to the caller.
    """
    sessions = store.fetch_sessions_in_window(tutor_id, thresholds.window_start(now), now)
    if not sessions:
        LOGGER.debug("Tutor %s has no sessions in the last %d days; skipping", tutor_id, thresholds.window_days)
        return None

    evaluations = store.fetch_evaluations([s.session_id for s in sessions])
    snapshot = compute_tutor_metrics(tutor_id, sessions, evaluations, thresholds, now=now)
    if snapshot is None:
        return None
    store.upsert_tutor_metrics(snapshot)
    return snapshot


def _score_isolated(
    store: MetricsStore,
    tutor_id: str,
    thresholds: MetricsConfig,
    now: datetime,
) -> Tuple[str, str, Optional[TutorMetricsSnapshot]]:
    try:
        snapshot = score_tutor(store, tutor_id, thresholds, now)
    except Exception:  # pylint: disable=broad-except
        LOGGER.exception("Failed to update metrics for tutor %s", tutor_id)
        return tutor_id, _FAILED, None
    return tutor_id, (_SCORED if snapshot is not None else _SKIPPED), snapshot


def run_analytics(
    store: MetricsStore,
    thresholds: Optional[MetricsConfig] = None,
    *,
    now: Optional[datetime] = None,
    max_workers: Optional[int] = None,
) -> AnalyticsRunSummary:
    """Recompute and persist the metrics snapshot for every tutor.

    Args:
        store: Storage providing the roster, window reads and snapshot upsert.
        thresholds: Scoring configuration; environment defaults when omitted.
        now: Computation time; the current UTC time when omitted.
        max_workers: Tutors scored concurrently. ``1`` scores sequentially.

    Raises:
        AnalyticsRunError: If the tutor roster cannot be read.
    """
    cfg = thresholds or MetricsConfig.from_env()
    run_at = now or datetime.now(timezone.utc)
    run_at = run_at.replace(tzinfo=timezone.utc) if run_at.tzinfo is None else run_at.astimezone(timezone.utc)
    workers = max(1, max_workers if max_workers is not None else config.ANALYTICS_MAX_WORKERS)

    try:
        tutor_ids = list(store.list_tutor_ids())
    except Exception as exc:  # pylint: disable=broad-except
        LOGGER.exception("Unable to load the tutor roster")
        raise AnalyticsRunError(f"Unable to load the tutor roster: {exc}") from exc

    summary = AnalyticsRunSummary(started_at=run_at, window_days=cfg.window_days, tutors_total=len(tutor_ids))
    LOGGER.info(
        "Calculating metrics for %d tutors (window=%d days, workers=%d)",
        len(tutor_ids),
        cfg.window_days,
        workers,
    )

    if workers == 1 or len(tutor_ids) <= 1:
        outcomes = [_score_isolated(store, tutor_id, cfg, run_at) for tutor_id in tutor_ids]
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tutor-metrics") as pool:
            # map() preserves roster order in the results.
            outcomes = list(pool.map(lambda tid: _score_isolated(store, tid, cfg, run_at), tutor_ids))

    for tutor_id, outcome, snapshot in outcomes:
        if outcome == _SCORED:
            summary.tutors_scored += 1
            summary.snapshots.append(snapshot)
        elif outcome == _SKIPPED:
            summary.tutors_skipped += 1
        else:
            summary.failed_tutor_ids.append(tutor_id)

    LOGGER.info(
        "Analytics completed. total=%d scored=%d skipped=%d failed=%d",
        summary.tutors_total,
        summary.tutors_scored,
        summary.tutors_skipped,
        summary.failures,
    )
    return summary


def log_analytics_summary(summary: AnalyticsRunSummary) -> None:
    """Write the run's risk distribution, flags and average rates to the log."""
    if not summary.snapshots:
        LOGGER.warning("No tutors found with sessions in the last %d days", summary.window_days)
        if summary.failures:
            LOGGER.warning("%d tutors failed to update", summary.failures)
        return

    count = len(summary.snapshots)
    churn = summary.churn_distribution()
    LOGGER.info(
        "Churn risk distribution: high=%d (%.1f%%) medium=%d (%.1f%%) low=%d (%.1f%%)",
        churn["high"],
        churn["high"] / count * 100,
        churn["medium"],
        churn["medium"] / count * 100,
        churn["low"],
        churn["low"] / count * 100,
    )
    no_show = summary.no_show_distribution()
    LOGGER.info("No-show risk distribution: high=%d medium=%d", no_show["high"], no_show["medium"])
    flags = summary.flag_counts()
    LOGGER.info(
        "Flagged tutors: high_reschedulers=%d poor_first_sessions=%d",
        flags["high_rescheduler"],
        flags["poor_first_session"],
    )
    rates = summary.average_rates()
    LOGGER.info(
        "Average rates: reschedule=%.1f%% no_show=%.1f%% first_session_dropout=%.1f%%",
        rates["reschedule_rate"] * 100,
        rates["no_show_rate"] * 100,
        rates["first_session_dropout_rate"] * 100,
    )
    if summary.failures:
        LOGGER.warning(
            "%d tutors failed to update: %s",
            summary.failures,
            ", ".join(summary.failed_tutor_ids),
        )
