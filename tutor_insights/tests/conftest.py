"""Shared fixtures: a throwaway SQLite database per test plus seeding helpers."""

from __future__ import annotations

import os

# Keep the module-level engine off disk before any tutor_insights import.
os.environ.setdefault("TI_SQLITE_PATH", ":memory:")
os.environ.setdefault("TI_LOG_LEVEL", "WARNING")

from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest

from tutor_insights.db_models import (
    SessionAIEvaluation,
    SessionTranscript,
    Student,
    Tutor,
    TutoringSession,
)
from tutor_insights.storage import DatabaseStorage

NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def storage(tmp_path) -> DatabaseStorage:
    store = DatabaseStorage(f"sqlite:///{tmp_path / 'tutor_insights.db'}")
    yield store
    store.dispose()


def add_tutor(storage: DatabaseStorage, tutor_id: str, name: str = "", subjects=None) -> None:
    with storage.session_scope() as session:
        session.add(
            Tutor(
                tutor_id=tutor_id,
                name=name or f"Tutor {tutor_id}",
                subjects=list(subjects or ["Algebra"]),
                years_experience=3,
                timezone="America/New_York",
                hire_date=date(2022, 1, 10),
            )
        )


def add_student(storage: DatabaseStorage, student_id: str) -> None:
    with storage.session_scope() as session:
        if session.get(Student, student_id) is None:
            session.add(Student(student_id=student_id, grade_level=9, segment="k12"))


def add_session(
    storage: DatabaseStorage,
    session_id: str,
    tutor_id: str,
    *,
    days_ago: float = 1,
    status: str = "completed",
    student_id: str = "student-1",
    subject: str = "Algebra",
    first: bool = False,
    rating: Optional[int] = None,
    churned: bool = False,
    initiator: Optional[str] = None,
    feedback: Optional[str] = None,
    transcript: Optional[str] = None,
    now: datetime = NOW,
) -> None:
    add_student(storage, student_id)
    scheduled = now - timedelta(days=days_ago)
    with storage.session_scope() as session:
        session.add(
            TutoringSession(
                session_id=session_id,
                tutor_id=tutor_id,
                student_id=student_id,
                subject=subject,
                scheduled_start_at=scheduled,
                actual_start_at=None if status == "no_show" else scheduled,
                duration_minutes=60 if status == "completed" else 0,
                status=status,
                is_first_session_for_student=first,
                reschedule_initiator=initiator,
                student_rating=rating,
                student_feedback=feedback,
                student_churned_after_session=churned,
                has_transcript=transcript is not None,
            )
        )
        # No relationship() links the two tables, so the parent row goes first.
        session.flush()
        if transcript is not None:
            session.add(SessionTranscript(session_id=session_id, transcript_text=transcript))


def add_evaluation(storage: DatabaseStorage, session_id: str, quality_score: int) -> None:
    with storage.session_scope() as session:
        session.add(
            SessionAIEvaluation(
                session_id=session_id,
                quality_score=quality_score,
                strengths=["Clear explanations"],
                areas_for_improvement=[],
                risk_tags=[],
                created_at=NOW,
            )
        )
