"""Dashboard service layer backing the Tutor Insights API routes."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from . import config
from .evaluator import SessionEvaluator, SessionMetadata, get_session_evaluator
from .metrics.engine import RiskLabel, SessionRecord
from .metrics.first_sessions import summarize_first_sessions
from .metrics.trends import weekly_rating_trend
from .storage import DatabaseStorage, get_storage

LOGGER = logging.getLogger(__name__)

TUTOR_DETAIL_SESSION_LIMIT = 50
TREND_WEEKS = 4
POOR_FIRST_SESSION_MIN_SESSIONS = 2
POOR_FIRST_SESSION_TUTOR_LIMIT = 20

SORT_FIELDS = ("churn_risk", "reschedule_rate", "no_show_rate", "rating", "ai_score", "name")


class ServiceError(Exception):
    """Base class for errors the routes translate into HTTP responses."""


class TutorNotFoundError(ServiceError):
    pass


class SessionNotFoundError(ServiceError):
    pass


class TranscriptMissingError(ServiceError):
    pass


class EvaluationFailedError(ServiceError):
    pass


def _churn_severity(row: Dict[str, Any]) -> int:
    label = row.get("churn_risk_label")
    try:
        return RiskLabel(label).severity
    except ValueError:
        return 0


def _numeric(key: str) -> Callable[[Dict[str, Any]], float]:
    def _value(row: Dict[str, Any]) -> float:
        return float(row.get(key) or 0.0)

    return _value


_SORT_KEYS: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "churn_risk": _churn_severity,
    "reschedule_rate": _numeric("tutor_reschedule_rate"),
    "no_show_rate": _numeric("tutor_no_show_rate"),
    "rating": _numeric("avg_student_rating_last_30d"),
    "ai_score": _numeric("ai_avg_quality_score"),
    "name": lambda row: (row.get("name") or "").casefold(),
}

_TUTOR_FIELDS = ("tutor_id", "name", "subjects", "years_experience", "timezone", "hire_date")


def _split_tutor_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Nest the snapshot fields of a merged tutor row under ``metrics``."""
    item = {key: row.get(key) for key in _TUTOR_FIELDS}
    if row.get("updated_at") is None:
        item["metrics"] = None
    else:
        item["metrics"] = {key: value for key, value in row.items() if key not in _TUTOR_FIELDS}
    return item


def _detail_to_record(tutor_id: str, detail: Dict[str, Any]) -> SessionRecord:
    return SessionRecord(
        session_id=detail["session_id"],
        tutor_id=tutor_id,
        status=detail["status"],
        scheduled_start_at=detail["scheduled_start_at"],
        is_first_session=detail["is_first_session_for_student"],
        reschedule_initiator=detail["reschedule_initiator"],
        student_rating=detail["student_rating"],
        student_churned=detail["student_churned_after_session"],
        subject=detail["subject"],
    )


class DashboardService:
    """Read models for the dashboard plus on-demand session evaluation."""

    def __init__(
        self,
        storage: Optional[DatabaseStorage] = None,
        evaluator: Optional[SessionEvaluator] = None,
        *,
        window_days: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._storage = storage
        self._evaluator = evaluator
        self._window_days = window_days if window_days is not None else config.METRIC_WINDOW_DAYS
        self._clock = clock

    @property
    def storage(self) -> DatabaseStorage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    @property
    def evaluator(self) -> SessionEvaluator:
        if self._evaluator is None:
            self._evaluator = get_session_evaluator()
        return self._evaluator

    # ------------------------------------------------------------------
    # Tutors
    # ------------------------------------------------------------------
    def list_tutors(
        self,
        *,
        subject: Optional[str] = None,
        risk_level: Optional[str] = None,
        sort_by: str = "churn_risk",
        order: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Filter, sort and paginate the tutor roster merged with snapshots.

        Args:
            subject: Case-insensitive substring matched against any of the tutor's subjects.
            risk_level: Exact churn risk label to keep.
            sort_by: One of ``SORT_FIELDS``; missing values sort as zero.
            order: ``asc`` or ``desc``.
            limit: Page size.
            offset: Rows skipped before the page.
        Returns:
            Dict[str, Any]: ``tutors`` for the page and ``pagination`` totals.
        """
        if sort_by not in _SORT_KEYS:
            raise ValueError(f"Unsupported sort field: {sort_by}")

        rows = self.storage.list_tutors_with_metrics()
        if subject:
            needle = subject.casefold()
            rows = [
                row for row in rows
                if any(needle in (item or "").casefold() for item in row.get("subjects") or [])
            ]
        if risk_level:
            rows = [row for row in rows if row.get("churn_risk_label") == risk_level]

        rows.sort(key=_SORT_KEYS[sort_by], reverse=(order == "desc"))

        total = len(rows)
        page = rows[offset:offset + limit]
        LOGGER.debug(
            "Listing tutors (subject=%s risk_level=%s sort_by=%s order=%s) -> %d of %d",
            subject,
            risk_level,
            sort_by,
            order,
            len(page),
            total,
        )
        return {
            "tutors": [_split_tutor_row(row) for row in page],
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + limit < total,
            },
        }

    def get_tutor_detail(self, tutor_id: str) -> Dict[str, Any]:
        """Return the tutor, its snapshot, recent sessions, rating trend and counts.

        Raises:
            TutorNotFoundError: If no tutor has ``tutor_id``.
        """
        tutor = self.storage.get_tutor(tutor_id)
        if tutor is None:
            raise TutorNotFoundError(f"Tutor {tutor_id} not found")

        now = self._clock()
        metrics = self.storage.get_tutor_metrics(tutor_id)
        sessions = self.storage.fetch_recent_session_details(
            tutor_id,
            now - timedelta(days=self._window_days),
            limit=TUTOR_DETAIL_SESSION_LIMIT,
        )
        trend = weekly_rating_trend(
            [_detail_to_record(tutor_id, item) for item in sessions],
            now,
            weeks=TREND_WEEKS,
        )

        return {
            "tutor": tutor,
            "metrics": metrics,
            "sessions": sessions,
            "rating_trend": [
                {"week": point.week, "avg_rating": point.avg_rating, "count": point.count}
                for point in trend
            ],
            "stats": {
                "total_sessions": len(sessions),
                "completed_sessions": sum(1 for s in sessions if s["status"] == "completed"),
                "first_sessions": sum(1 for s in sessions if s["is_first_session_for_student"]),
                "evaluated_sessions": sum(1 for s in sessions if s["evaluation"] is not None),
            },
        }

    # ------------------------------------------------------------------
    # First sessions
    # ------------------------------------------------------------------
    def get_first_session_overview(self, *, days: int = 30, subject: Optional[str] = None) -> Dict[str, Any]:
        """Platform first-session outcomes over the last ``days`` days.

        The overview covers every subject; ``subject`` narrows the per-subject
        breakdown only.
        """
        since = self._clock() - timedelta(days=days)
        first_sessions = self.storage.fetch_first_sessions_since(since)
        overview, _ = summarize_first_sessions(first_sessions, window_days=days)

        if subject:
            first_sessions = [s for s in first_sessions if s.subject == subject]
        _, by_subject = summarize_first_sessions(first_sessions, window_days=days)

        poor_tutors = self.storage.list_poor_first_session_tutors(
            min_first_sessions=POOR_FIRST_SESSION_MIN_SESSIONS,
            limit=POOR_FIRST_SESSION_TUTOR_LIMIT,
        )
        return {
            "overview": {
                "total_first_sessions": overview.total_first_sessions,
                "bad_first_sessions": overview.bad_first_sessions,
                "overall_dropout_rate": overview.overall_dropout_rate,
                "avg_rating": overview.avg_rating,
                "window": f"Last {days} days",
            },
            "by_subject": [
                {
                    "subject": stats.subject,
                    "total_first_sessions": stats.total_first_sessions,
                    "bad_first_sessions": stats.bad_first_sessions,
                    "dropout_rate": stats.dropout_rate,
                }
                for stats in by_subject
            ],
            "poor_performing_tutors": poor_tutors,
        }

    # ------------------------------------------------------------------
    # Evaluations
    # ------------------------------------------------------------------
    def evaluate_session(self, session_id: str) -> Dict[str, Any]:
        """Return the stored evaluation for a session, evaluating it first if needed.

        Returns:
            Dict[str, Any]: ``evaluation`` payload and ``cached`` flag.
        Raises:
            SessionNotFoundError: Unknown ``session_id``.
            TranscriptMissingError: The session has no transcript.
            EvaluationFailedError: The evaluator could not produce a result.
        """
        existing = self.storage.get_evaluation(session_id)
        if existing is not None:
            LOGGER.info("Returning stored evaluation for session %s", session_id)
            return {"evaluation": existing, "cached": True}

        session = self.storage.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")

        transcript = self.storage.get_transcript(session_id)
        if not transcript:
            raise TranscriptMissingError(f"Session {session_id} has no transcript")

        metadata = SessionMetadata(
            session_id=session_id,
            subject=session["subject"],
            is_first_session=session["is_first_session_for_student"],
            student_rating=session["student_rating"],
            student_feedback=session["student_feedback"],
            status=session["status"],
            duration_minutes=session["duration_minutes"] or 0,
        )
        # No stored row means any in-process result is stale.
        self.evaluator.clear_session_cache(session_id)
        response = self.evaluator.evaluate_session(metadata, transcript)
        if not response.success or response.evaluation is None:
            raise EvaluationFailedError(response.error or "Evaluation failed")

        result = response.evaluation
        stored = self.storage.store_evaluation(
            session_id,
            quality_score=result.quality_score,
            strengths=result.strengths,
            areas_for_improvement=result.areas_for_improvement,
            risk_tags=result.risk_tags,
        )
        return {"evaluation": stored, "cached": False}


_dashboard_service: Optional[DashboardService] = None


def get_dashboard_service() -> DashboardService:
    """FastAPI dependency to retrieve the shared dashboard service."""
    global _dashboard_service  # noqa: PLW0603 - module-level cache is intentional
    if _dashboard_service is None:
        _dashboard_service = DashboardService()
    return _dashboard_service
