"""SQLAlchemy ORM models for Tutor Insights."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    func,
)

from .db import Base


class TimestampMixin:
    """Mixin that adds a created_at audit field."""

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class Tutor(Base):
    """Tutor roster entry."""

    __tablename__ = "tutors"

    tutor_id = Column(String(255), primary_key=True)
    name = Column(Text, nullable=False)
    subjects = Column(JSON, nullable=False, default=list)
    years_experience = Column(Integer, nullable=True)
    timezone = Column(Text, nullable=True)
    hire_date = Column(Date, nullable=True)


class Student(Base):
    """Student roster entry."""

    __tablename__ = "students"

    student_id = Column(String(255), primary_key=True)
    grade_level = Column(Integer, nullable=True)
    segment = Column(Text, nullable=True)


class TutoringSession(TimestampMixin, Base):
    """A scheduled tutoring session and its outcome."""

    __tablename__ = "sessions"

    session_id = Column(String(255), primary_key=True)
    tutor_id = Column(String(255), ForeignKey("tutors.tutor_id"), nullable=False, index=True)
    student_id = Column(String(255), ForeignKey("students.student_id"), nullable=False, index=True)
    subject = Column(Text, nullable=False)
    scheduled_start_at = Column(DateTime(timezone=True), nullable=False)
    actual_start_at = Column(DateTime(timezone=True), nullable=True)  # NULL for no-shows
    duration_minutes = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False)
    is_first_session_for_student = Column(Boolean, nullable=False, default=False)
    reschedule_initiator = Column(String(32), nullable=True)
    rescheduled_from_session_id = Column(String(255), nullable=True)
    student_rating = Column(Integer, nullable=True)
    student_feedback = Column(Text, nullable=True)
    student_churned_after_session = Column(Boolean, nullable=False, default=False)
    tutor_churned_within_30d = Column(Boolean, nullable=False, default=False)
    has_transcript = Column(Boolean, nullable=False, default=False)


Index("ix_sessions_tutor_scheduled", TutoringSession.tutor_id, TutoringSession.scheduled_start_at)


class SessionTranscript(Base):
    """Raw transcript text for a session ("Tutor: ...\\nStudent: ...")."""

    __tablename__ = "session_transcripts"

    session_id = Column(String(255), ForeignKey("sessions.session_id"), primary_key=True)
    transcript_text = Column(Text, nullable=False)


class SessionAIEvaluation(TimestampMixin, Base):
    """Language-model quality assessment of a single session."""

    __tablename__ = "session_ai_evaluations"

    session_id = Column(String(255), ForeignKey("sessions.session_id"), primary_key=True)
    quality_score = Column(Integer, nullable=False)
    strengths = Column(JSON, nullable=False, default=list)
    areas_for_improvement = Column(JSON, nullable=False, default=list)
    risk_tags = Column(JSON, nullable=False, default=list)


class TutorMetricsRecord(Base):
    """Latest risk metrics snapshot per tutor, overwritten by every analytics run."""

    __tablename__ = "tutor_metrics"

    tutor_id = Column(String(255), ForeignKey("tutors.tutor_id"), primary_key=True)
    total_sessions_last_30d = Column(Integer, nullable=False)
    first_sessions_last_30d = Column(Integer, nullable=False)
    first_session_dropout_rate = Column(Float, nullable=False)
    tutor_reschedule_rate = Column(Float, nullable=False)
    tutor_no_show_rate = Column(Float, nullable=False)
    avg_student_rating_last_30d = Column(Float, nullable=True)
    ai_avg_quality_score = Column(Float, nullable=True)
    churn_risk_label = Column(String(16), nullable=True)
    no_show_risk_label = Column(String(16), nullable=True)
    high_rescheduler_flag = Column(Boolean, nullable=False, default=False)
    poor_first_session_flag = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
