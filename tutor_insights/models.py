"""Pydantic models for the Tutor Insights API."""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

RiskLevel = Literal["low", "medium", "high"]


class TutorMetrics(BaseModel):
    """Risk metrics snapshot for a tutor over the trailing window.

    Attributes:
        total_sessions_last_30d: Sessions scheduled in the window.
        first_sessions_last_30d: Of those, students' first sessions.
        first_session_dropout_rate: Share of first sessions ending in churn or a rating of 2 or lower.
        tutor_reschedule_rate: Tutor-initiated reschedules over all sessions.
        tutor_no_show_rate: No-shows over all sessions.
        avg_student_rating_last_30d: Mean rating of completed sessions, null when none were rated.
        ai_avg_quality_score: Mean AI quality score, null when nothing was evaluated.
    """

    total_sessions_last_30d: int
    first_sessions_last_30d: int
    first_session_dropout_rate: float = Field(..., ge=0.0, le=1.0)
    tutor_reschedule_rate: float = Field(..., ge=0.0, le=1.0)
    tutor_no_show_rate: float = Field(..., ge=0.0, le=1.0)
    avg_student_rating_last_30d: Optional[float] = None
    ai_avg_quality_score: Optional[float] = None
    churn_risk_label: Optional[RiskLevel] = None
    no_show_risk_label: Optional[RiskLevel] = None
    high_rescheduler_flag: bool = False
    poor_first_session_flag: bool = False
    updated_at: Optional[datetime] = None


class Tutor(BaseModel):
    tutor_id: str = Field(..., description="Unique tutor identifier")
    name: str = Field(..., description="Tutor display name")
    subjects: List[str] = Field(default_factory=list, description="Subjects the tutor teaches")
    years_experience: Optional[int] = None
    timezone: Optional[str] = None
    hire_date: Optional[date] = None


class TutorListItem(Tutor):
    """Tutor roster entry merged with its latest snapshot (null when never scored)."""

    metrics: Optional[TutorMetrics] = None


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class TutorListResponse(BaseModel):
    tutors: List[TutorListItem]
    pagination: Pagination


class SessionEvaluation(BaseModel):
    quality_score: int = Field(..., ge=1, le=5)
    strengths: List[str] = Field(default_factory=list)
    areas_for_improvement: List[str] = Field(default_factory=list)
    risk_tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class SessionDetail(BaseModel):
    session_id: str
    student_id: str
    subject: str
    scheduled_start_at: datetime
    actual_start_at: Optional[datetime] = None
    duration_minutes: int
    status: Literal["completed", "no_show", "rescheduled"]
    is_first_session_for_student: bool
    reschedule_initiator: Optional[Literal["tutor", "student"]] = None
    student_rating: Optional[int] = None
    student_feedback: Optional[str] = None
    student_churned_after_session: bool
    has_transcript: bool
    evaluation: Optional[SessionEvaluation] = None
    transcript: Optional[str] = None


class WeeklyRatingPoint(BaseModel):
    week: str
    avg_rating: float
    count: int


class TutorSessionStats(BaseModel):
    total_sessions: int
    completed_sessions: int
    first_sessions: int
    evaluated_sessions: int


class TutorDetailResponse(BaseModel):
    tutor: Tutor
    metrics: Optional[TutorMetrics] = None
    sessions: List[SessionDetail]
    rating_trend: List[WeeklyRatingPoint]
    stats: TutorSessionStats


class FirstSessionOverview(BaseModel):
    total_first_sessions: int
    bad_first_sessions: int
    overall_dropout_rate: float = Field(..., description="Dropout share as a percentage (0-100)")
    avg_rating: Optional[float] = None
    window: str


class SubjectFirstSessionStats(BaseModel):
    subject: str
    total_first_sessions: int
    bad_first_sessions: int
    dropout_rate: float


class PoorFirstSessionTutor(BaseModel):
    tutor_id: str
    name: str
    subjects: List[str] = Field(default_factory=list)
    first_session_dropout_rate: float
    first_sessions_last_30d: int
    avg_student_rating_last_30d: Optional[float] = None
    poor_first_session_flag: bool


class FirstSessionsResponse(BaseModel):
    overview: FirstSessionOverview
    by_subject: List[SubjectFirstSessionStats]
    poor_performing_tutors: List[PoorFirstSessionTutor]


class EvaluateSessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Session to evaluate")


class EvaluateSessionResponse(BaseModel):
    success: bool = True
    evaluation: SessionEvaluation
    cached: bool = Field(default=False, description="True when an existing evaluation was returned")
