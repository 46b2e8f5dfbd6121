"""SQLAlchemy-backed persistence helpers for Tutor Insights."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from .db import (
    DATABASE_URL,
    SessionLocal,
    create_db_engine,
    create_session_factory,
    engine as default_engine,
    init_database,
    session_scope,
)
from .db_models import (
    SessionAIEvaluation,
    SessionTranscript,
    Tutor,
    TutoringSession,
    TutorMetricsRecord,
)
from .metrics.engine import EvaluationRecord, SessionRecord, TutorMetricsSnapshot

LOGGER = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utc_bind(value: datetime) -> datetime:
    """Timestamps are bound in UTC; naive values are already UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class PendingEvaluation:
    """A transcribed session that has no AI evaluation yet."""

    session_id: str
    subject: str
    is_first_session: bool
    student_rating: Optional[int]
    student_feedback: Optional[str]
    status: str
    duration_minutes: int
    transcript_text: str


class DatabaseStorage:
    """Utility class encapsulating all database reads and writes."""

    def __init__(self, database_url: Optional[str] = None) -> None:
        if database_url is None:
            url = DATABASE_URL
            self._engine = default_engine
            self._session_factory: sessionmaker = SessionLocal
        else:
            url = database_url
            self._engine = create_db_engine(database_url)
            self._session_factory = create_session_factory(self._engine)

        safe_url = url if url.startswith("sqlite") else "redacted"
        LOGGER.info("Initializing database storage (database_url=%s)", safe_url)
        try:
            init_database(self._engine)
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Database initialisation failed")
            raise
        LOGGER.info("Database initialisation complete")

    def session_scope(self):
        """Transactional scope bound to this storage's engine."""
        return session_scope(self._session_factory)

    def dispose(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Hydration helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _tutor_to_dict(record: Tutor) -> Dict[str, Any]:
        return {
            "tutor_id": record.tutor_id,
            "name": record.name,
            "subjects": list(record.subjects or []),
            "years_experience": record.years_experience,
            "timezone": record.timezone,
            "hire_date": record.hire_date,
        }

    @staticmethod
    def _metrics_to_dict(record: TutorMetricsRecord) -> Dict[str, Any]:
        return {
            "tutor_id": record.tutor_id,
            "total_sessions_last_30d": record.total_sessions_last_30d,
            "first_sessions_last_30d": record.first_sessions_last_30d,
            "first_session_dropout_rate": record.first_session_dropout_rate,
            "tutor_reschedule_rate": record.tutor_reschedule_rate,
            "tutor_no_show_rate": record.tutor_no_show_rate,
            "avg_student_rating_last_30d": record.avg_student_rating_last_30d,
            "ai_avg_quality_score": record.ai_avg_quality_score,
            "churn_risk_label": record.churn_risk_label,
            "no_show_risk_label": record.no_show_risk_label,
            "high_rescheduler_flag": bool(record.high_rescheduler_flag),
            "poor_first_session_flag": bool(record.poor_first_session_flag),
            "updated_at": _as_utc(record.updated_at),
        }

    @staticmethod
    def _evaluation_to_dict(record: SessionAIEvaluation) -> Dict[str, Any]:
        return {
            "session_id": record.session_id,
            "quality_score": record.quality_score,
            "strengths": list(record.strengths or []),
            "areas_for_improvement": list(record.areas_for_improvement or []),
            "risk_tags": list(record.risk_tags or []),
            "created_at": _as_utc(record.created_at),
        }

    @staticmethod
    def _session_to_record(row: TutoringSession) -> SessionRecord:
        return SessionRecord(
            session_id=row.session_id,
            tutor_id=row.tutor_id,
            status=row.status,
            scheduled_start_at=_as_utc(row.scheduled_start_at),
            is_first_session=bool(row.is_first_session_for_student),
            reschedule_initiator=row.reschedule_initiator,
            student_rating=row.student_rating,
            student_churned=bool(row.student_churned_after_session),
            subject=row.subject,
        )

    # ------------------------------------------------------------------
    # Analytics reads
    # ------------------------------------------------------------------
    def list_tutor_ids(self) -> List[str]:
        with self.session_scope() as session:
            return list(session.execute(select(Tutor.tutor_id).order_by(Tutor.tutor_id)).scalars())

    def fetch_sessions_in_window(self, tutor_id: str, since: datetime, until: datetime) -> List[SessionRecord]:
        """Return the tutor's sessions scheduled in ``[since, until]``."""
        with self.session_scope() as session:
            rows = session.execute(
                select(TutoringSession).where(
                    TutoringSession.tutor_id == tutor_id,
                    TutoringSession.scheduled_start_at >= _utc_bind(since),
                    TutoringSession.scheduled_start_at <= _utc_bind(until),
                )
            ).scalars()
            return [self._session_to_record(row) for row in rows]

    def fetch_evaluations(self, session_ids: Sequence[str]) -> List[EvaluationRecord]:
        if not session_ids:
            return []
        with self.session_scope() as session:
            rows = session.execute(
                select(SessionAIEvaluation.session_id, SessionAIEvaluation.quality_score).where(
                    SessionAIEvaluation.session_id.in_(list(session_ids))
                )
            ).all()
            return [EvaluationRecord(session_id=row[0], quality_score=row[1]) for row in rows]

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------
    def upsert_tutor_metrics(self, snapshot: TutorMetricsSnapshot) -> None:
        """Insert the tutor's snapshot, or replace every field of the existing one."""
        values = snapshot.to_dict()
        values.pop("tutor_id")
        # churn_risk_score has no column.
        values.pop("churn_risk_score")
        values["updated_at"] = _utc_bind(snapshot.updated_at)
        with self.session_scope() as session:
            current = session.get(TutorMetricsRecord, snapshot.tutor_id)
            if current is None:
                session.add(TutorMetricsRecord(tutor_id=snapshot.tutor_id, **values))
            else:
                for key, value in values.items():
                    setattr(current, key, value)
        LOGGER.debug("Upserted metrics for tutor %s", snapshot.tutor_id)

    def get_tutor_metrics(self, tutor_id: str) -> Optional[Dict[str, Any]]:
        with self.session_scope() as session:
            record = session.get(TutorMetricsRecord, tutor_id)
            return self._metrics_to_dict(record) if record is not None else None

    # ------------------------------------------------------------------
    # Dashboard reads
    # ------------------------------------------------------------------
    def get_tutor(self, tutor_id: str) -> Optional[Dict[str, Any]]:
        with self.session_scope() as session:
            record = session.get(Tutor, tutor_id)
            return self._tutor_to_dict(record) if record is not None else None

    def list_tutors_with_metrics(self) -> List[Dict[str, Any]]:
        """Return every tutor merged with its snapshot fields (``None`` when never scored)."""
        with self.session_scope() as session:
            rows = session.execute(
                select(Tutor, TutorMetricsRecord)
                .outerjoin(TutorMetricsRecord, Tutor.tutor_id == TutorMetricsRecord.tutor_id)
                .order_by(Tutor.tutor_id)
            ).all()
            results = []
            for tutor, metrics in rows:
                payload = self._tutor_to_dict(tutor)
                if metrics is not None:
                    payload.update(self._metrics_to_dict(metrics))
                results.append(payload)
            return results

    def fetch_recent_session_details(
        self,
        tutor_id: str,
        since: datetime,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Most recent sessions for a tutor joined with their evaluation and transcript."""
        with self.session_scope() as session:
            rows = session.execute(
                select(TutoringSession, SessionAIEvaluation, SessionTranscript.transcript_text)
                .outerjoin(
                    SessionAIEvaluation,
                    TutoringSession.session_id == SessionAIEvaluation.session_id,
                )
                .outerjoin(
                    SessionTranscript,
                    TutoringSession.session_id == SessionTranscript.session_id,
                )
                .where(
                    TutoringSession.tutor_id == tutor_id,
                    TutoringSession.scheduled_start_at >= _utc_bind(since),
                )
                .order_by(TutoringSession.scheduled_start_at.desc())
                .limit(limit)
            ).all()

            details = []
            for row, evaluation, transcript in rows:
                details.append(
                    {
                        "session_id": row.session_id,
                        "student_id": row.student_id,
                        "subject": row.subject,
                        "scheduled_start_at": _as_utc(row.scheduled_start_at),
                        "actual_start_at": _as_utc(row.actual_start_at),
                        "duration_minutes": row.duration_minutes,
                        "status": row.status,
                        "is_first_session_for_student": bool(row.is_first_session_for_student),
                        "reschedule_initiator": row.reschedule_initiator,
                        "student_rating": row.student_rating,
                        "student_feedback": row.student_feedback,
                        "student_churned_after_session": bool(row.student_churned_after_session),
                        "has_transcript": bool(row.has_transcript),
                        "evaluation": self._evaluation_to_dict(evaluation) if evaluation is not None else None,
                        "transcript": transcript if row.has_transcript else None,
                    }
                )
            return details

    def fetch_first_sessions_since(
        self,
        since: datetime,
        subject: Optional[str] = None,
    ) -> List[SessionRecord]:
        with self.session_scope() as session:
            query = select(TutoringSession).where(
                TutoringSession.is_first_session_for_student.is_(True),
                TutoringSession.scheduled_start_at >= _utc_bind(since),
            )
            if subject:
                query = query.where(TutoringSession.subject == subject)
            return [self._session_to_record(row) for row in session.execute(query).scalars()]

    def list_poor_first_session_tutors(
        self,
        *,
        min_first_sessions: int = 2,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        with self.session_scope() as session:
            rows = session.execute(
                select(Tutor, TutorMetricsRecord)
                .join(TutorMetricsRecord, Tutor.tutor_id == TutorMetricsRecord.tutor_id)
                .where(
                    TutorMetricsRecord.poor_first_session_flag.is_(True),
                    TutorMetricsRecord.first_sessions_last_30d >= min_first_sessions,
                )
                .order_by(TutorMetricsRecord.first_session_dropout_rate.desc(), Tutor.tutor_id)
                .limit(limit)
            ).all()
            return [
                {
                    "tutor_id": tutor.tutor_id,
                    "name": tutor.name,
                    "subjects": list(tutor.subjects or []),
                    "first_session_dropout_rate": metrics.first_session_dropout_rate,
                    "first_sessions_last_30d": metrics.first_sessions_last_30d,
                    "avg_student_rating_last_30d": metrics.avg_student_rating_last_30d,
                    "poor_first_session_flag": bool(metrics.poor_first_session_flag),
                }
                for tutor, metrics in rows
            ]

    # ------------------------------------------------------------------
    # Evaluations
    # ------------------------------------------------------------------
    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self.session_scope() as session:
            row = session.get(TutoringSession, session_id)
            if row is None:
                return None
            return {
                "session_id": row.session_id,
                "tutor_id": row.tutor_id,
                "subject": row.subject,
                "status": row.status,
                "duration_minutes": row.duration_minutes,
                "is_first_session_for_student": bool(row.is_first_session_for_student),
                "student_rating": row.student_rating,
                "student_feedback": row.student_feedback,
            }

    def get_transcript(self, session_id: str) -> Optional[str]:
        with self.session_scope() as session:
            row = session.get(SessionTranscript, session_id)
            return row.transcript_text if row is not None else None

    def get_evaluation(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self.session_scope() as session:
            row = session.get(SessionAIEvaluation, session_id)
            return self._evaluation_to_dict(row) if row is not None else None

    def list_pending_evaluations(self, limit: int) -> List[PendingEvaluation]:
        """Transcribed sessions without an evaluation, up to ``limit``."""
        with self.session_scope() as session:
            rows = session.execute(
                select(TutoringSession, SessionTranscript.transcript_text)
                .join(SessionTranscript, TutoringSession.session_id == SessionTranscript.session_id)
                .outerjoin(
                    SessionAIEvaluation,
                    TutoringSession.session_id == SessionAIEvaluation.session_id,
                )
                .where(SessionAIEvaluation.session_id.is_(None))
                .order_by(TutoringSession.scheduled_start_at, TutoringSession.session_id)
                .limit(limit)
            ).all()
            return [
                PendingEvaluation(
                    session_id=row.session_id,
                    subject=row.subject,
                    is_first_session=bool(row.is_first_session_for_student),
                    student_rating=row.student_rating,
                    student_feedback=row.student_feedback,
                    status=row.status,
                    duration_minutes=row.duration_minutes or 0,
                    transcript_text=transcript,
                )
                for row, transcript in rows
            ]

    def store_evaluation(
        self,
        session_id: str,
        *,
        quality_score: int,
        strengths: Iterable[str],
        areas_for_improvement: Iterable[str],
        risk_tags: Iterable[str],
        created_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        record = SessionAIEvaluation(
            session_id=session_id,
            quality_score=quality_score,
            strengths=list(strengths),
            areas_for_improvement=list(areas_for_improvement),
            risk_tags=list(risk_tags),
            created_at=created_at or datetime.now(timezone.utc),
        )
        with self.session_scope() as session:
            session.add(record)
        LOGGER.info("Stored evaluation for session %s (score=%d)", session_id, quality_score)
        return self._evaluation_to_dict(record)

    def quality_score_counts(self) -> Dict[int, int]:
        """Count stored evaluations per quality score, with every score 1-5 present."""
        counts = {score: 0 for score in range(1, 6)}
        with self.session_scope() as session:
            rows = session.execute(
                select(SessionAIEvaluation.quality_score, func.count())
                .group_by(SessionAIEvaluation.quality_score)
            ).all()
        for score, count in rows:
            if score in counts:
                counts[score] = int(count)
        return counts


_storage: Optional[DatabaseStorage] = None


def get_storage() -> DatabaseStorage:
    """Return the process-wide storage bound to the configured database."""
    global _storage  # noqa: PLW0603 - module-level cache is intentional
    if _storage is None:
        _storage = DatabaseStorage()
    return _storage
