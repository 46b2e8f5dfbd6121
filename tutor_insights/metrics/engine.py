"""Per-tutor risk metrics computation.

Everything in this module is a pure function of its inputs: no database
access, no clock reads and no randomness. The analytics driver supplies the
sessions that fall inside the trailing window, the evaluations for those
sessions and the computation time, then persists whatever comes back.

Two label rules live here, and they have different shapes:

- ``calculate_no_show_risk_label`` is a decision list (first match wins).
- ``calculate_churn_risk_label`` is an additive score mapped to a label.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .. import config


class SessionStatus(str, Enum):
    """Lifecycle outcome recorded on a session."""

    COMPLETED = "completed"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


class RescheduleInitiator(str, Enum):
    TUTOR = "tutor"
    STUDENT = "student"


class RiskLabel(str, Enum):
    """Categorical severity used for both churn and no-show risk."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def severity(self) -> int:
        return _RISK_SEVERITY[self]


_RISK_SEVERITY = {RiskLabel.LOW: 1, RiskLabel.MEDIUM: 2, RiskLabel.HIGH: 3}

# Churn score cut-offs.
CHURN_SCORE_HIGH = 4
CHURN_SCORE_MEDIUM = 2
# Ratings at or below this mark a first session as a dropout even without churn.
BAD_FIRST_SESSION_MAX_RATING = 2
# Averages below these add the heavier churn weight.
SEVERE_RATING_CUTOFF = 3.0
SEVERE_AI_SCORE_CUTOFF = 2.5


class InvalidMetricsConfigError(ValueError):
    """Raised when a threshold configuration cannot produce meaningful labels."""


@dataclass(frozen=True)
class MetricsConfig:
    """Thresholds and window length used to score tutors.

    Attributes:
        window_days: Trailing window, in days, that scopes which sessions count.
        high_rescheduler_threshold: Tutor-initiated reschedule rate above which a
            tutor is flagged as a high rescheduler.
        no_show_high_threshold: No-show rate above which risk is high.
        no_show_medium_threshold: No-show rate above which risk is at least medium.
        poor_first_session_threshold: First-session dropout rate above which the
            poor-first-session flag is raised.
        churn_risk_rating_low_threshold: Average student rating below which the
            rating contributes to churn risk.
        churn_risk_ai_score_low_threshold: Average AI quality score below which the
            score contributes to churn risk.
    """

    window_days: int = 30
    high_rescheduler_threshold: float = 0.15
    no_show_high_threshold: float = 0.10
    no_show_medium_threshold: float = 0.05
    poor_first_session_threshold: float = 0.25
    churn_risk_rating_low_threshold: float = 3.5
    churn_risk_ai_score_low_threshold: float = 3.0

    def __post_init__(self) -> None:
        if isinstance(self.window_days, bool) or not isinstance(self.window_days, int) or self.window_days <= 0:
            raise InvalidMetricsConfigError(
                f"window_days must be a positive integer, got {self.window_days!r}"
            )
        for name in (
            "high_rescheduler_threshold",
            "no_show_high_threshold",
            "no_show_medium_threshold",
            "poor_first_session_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise InvalidMetricsConfigError(f"{name} must be within [0, 1], got {value!r}")
        for name in ("churn_risk_rating_low_threshold", "churn_risk_ai_score_low_threshold"):
            value = getattr(self, name)
            if not 1.0 <= value <= 5.0:
                raise InvalidMetricsConfigError(f"{name} must be within [1, 5], got {value!r}")
        if self.no_show_medium_threshold > self.no_show_high_threshold:
            raise InvalidMetricsConfigError(
                "no_show_medium_threshold must not exceed no_show_high_threshold"
            )

    @classmethod
    def from_env(cls, **overrides: Any) -> "MetricsConfig":
        """Build a config from the environment-backed defaults in ``config``."""
        values: Dict[str, Any] = {
            "window_days": config.METRIC_WINDOW_DAYS,
            "high_rescheduler_threshold": config.HIGH_RESCHEDULER_THRESHOLD,
            "no_show_high_threshold": config.NO_SHOW_HIGH_THRESHOLD,
            "no_show_medium_threshold": config.NO_SHOW_MEDIUM_THRESHOLD,
            "poor_first_session_threshold": config.POOR_FIRST_SESSION_THRESHOLD,
            "churn_risk_rating_low_threshold": config.CHURN_RISK_RATING_LOW_THRESHOLD,
            "churn_risk_ai_score_low_threshold": config.CHURN_RISK_AI_SCORE_LOW_THRESHOLD,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def window_start(self, now: datetime) -> datetime:
        """Return the inclusive lower bound of the scoring window ending at ``now``."""
        return now - timedelta(days=self.window_days)


@dataclass(frozen=True)
class SessionRecord:
    """Session fields the metrics computation reads."""

    session_id: str
    tutor_id: str
    status: str
    scheduled_start_at: datetime
    is_first_session: bool = False
    reschedule_initiator: Optional[str] = None
    student_rating: Optional[int] = None
    student_churned: bool = False
    subject: str = ""


@dataclass(frozen=True)
class EvaluationRecord:
    session_id: str
    quality_score: int


@dataclass(frozen=True)
class TutorMetricsSnapshot:
    """Window-scoped aggregate for one tutor."""

    tutor_id: str
    total_sessions_last_30d: int
    first_sessions_last_30d: int
    first_session_dropout_rate: float
    tutor_reschedule_rate: float
    tutor_no_show_rate: float
    avg_student_rating_last_30d: Optional[float]
    ai_avg_quality_score: Optional[float]
    churn_risk_label: RiskLabel
    no_show_risk_label: RiskLabel
    high_rescheduler_flag: bool
    poor_first_session_flag: bool
    updated_at: datetime
    churn_risk_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialise with plain string labels."""
        payload = asdict(self)
        payload["churn_risk_label"] = self.churn_risk_label.value
        payload["no_show_risk_label"] = self.no_show_risk_label.value
        return payload


def is_bad_first_session(session: SessionRecord) -> bool:
    """A first session counts as a dropout when the student churned or rated it 2 or lower."""
    if session.student_churned:
        return True
    return session.student_rating is not None and session.student_rating <= BAD_FIRST_SESSION_MAX_RATING


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def _mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def calculate_no_show_risk_label(
    no_show_rate: float,
    reschedule_rate: float,
    avg_rating: Optional[float],
    thresholds: Optional[MetricsConfig] = None,
) -> RiskLabel:
    """Derive the no-show risk label; the first matching rule wins."""
    cfg = thresholds or MetricsConfig()

    if no_show_rate > cfg.no_show_high_threshold:
        return RiskLabel.HIGH

    if (
        reschedule_rate > cfg.high_rescheduler_threshold
        and avg_rating is not None
        and avg_rating < cfg.churn_risk_rating_low_threshold
    ):
        return RiskLabel.HIGH

    if no_show_rate > cfg.no_show_medium_threshold:
        return RiskLabel.MEDIUM

    return RiskLabel.LOW


def calculate_churn_risk_score(
    avg_rating: Optional[float],
    ai_avg_score: Optional[float],
    no_show_rate: float,
    reschedule_rate: float,
    first_session_dropout_rate: float,
    thresholds: Optional[MetricsConfig] = None,
) -> int:
    """Sum the weighted churn risk factors."""
    cfg = thresholds or MetricsConfig()
    score = 0

    if avg_rating is not None and avg_rating < cfg.churn_risk_rating_low_threshold:
        score += 2 if avg_rating < SEVERE_RATING_CUTOFF else 1

    if ai_avg_score is not None and ai_avg_score < cfg.churn_risk_ai_score_low_threshold:
        score += 2 if ai_avg_score < SEVERE_AI_SCORE_CUTOFF else 1

    # High and medium no-show bands are exclusive.
    if no_show_rate > cfg.no_show_high_threshold:
        score += 2
    elif no_show_rate > cfg.no_show_medium_threshold:
        score += 1

    if reschedule_rate > cfg.high_rescheduler_threshold:
        score += 1

    if first_session_dropout_rate > cfg.poor_first_session_threshold:
        score += 2

    return score


def churn_label_for_score(score: int) -> RiskLabel:
    if score >= CHURN_SCORE_HIGH:
        return RiskLabel.HIGH
    if score >= CHURN_SCORE_MEDIUM:
        return RiskLabel.MEDIUM
    return RiskLabel.LOW


def calculate_churn_risk_label(
    avg_rating: Optional[float],
    ai_avg_score: Optional[float],
    no_show_rate: float,
    reschedule_rate: float,
    first_session_dropout_rate: float,
    thresholds: Optional[MetricsConfig] = None,
) -> RiskLabel:
    """Map the additive churn score onto a risk label."""
    return churn_label_for_score(
        calculate_churn_risk_score(
            avg_rating,
            ai_avg_score,
            no_show_rate,
            reschedule_rate,
            first_session_dropout_rate,
            thresholds,
        )
    )


def compute_tutor_metrics(
    tutor_id: str,
    sessions: Iterable[SessionRecord],
    evaluations: Iterable[EvaluationRecord],
    thresholds: Optional[MetricsConfig] = None,
    *,
    now: datetime,
) -> Optional[TutorMetricsSnapshot]:
    """Compute the metrics snapshot for one tutor.

    Args:
        tutor_id: Tutor identity the snapshot is keyed by.
        sessions: The tutor's sessions scheduled inside the scoring window.
        evaluations: AI evaluations for those sessions. Evaluations for sessions
            outside ``sessions`` are ignored.
        thresholds: Scoring thresholds; defaults apply when omitted.
        now: Computation time, stamped on the snapshot as ``updated_at``.

    Returns:
        The snapshot, or ``None`` when the tutor has no sessions in the window.
    """
    cfg = thresholds or MetricsConfig()
    window_sessions: List[SessionRecord] = list(sessions)
    total = len(window_sessions)
    if total == 0:
        return None

    completed = [s for s in window_sessions if s.status == SessionStatus.COMPLETED.value]
    no_shows = [s for s in window_sessions if s.status == SessionStatus.NO_SHOW.value]
    rescheduled = [s for s in window_sessions if s.status == SessionStatus.RESCHEDULED.value]
    first_sessions = [s for s in window_sessions if s.is_first_session]

    dropout_rate = _ratio(sum(1 for s in first_sessions if is_bad_first_session(s)), len(first_sessions))

    # Denominator is every session in the window, not just the rescheduled ones.
    tutor_rescheduled = [
        s for s in rescheduled if s.reschedule_initiator == RescheduleInitiator.TUTOR.value
    ]
    reschedule_rate = _ratio(len(tutor_rescheduled), total)
    no_show_rate = _ratio(len(no_shows), total)

    avg_rating = _mean([s.student_rating for s in completed if s.student_rating is not None])

    session_ids = {s.session_id for s in window_sessions}
    ai_avg_score = _mean([e.quality_score for e in evaluations if e.session_id in session_ids])

    churn_score = calculate_churn_risk_score(
        avg_rating, ai_avg_score, no_show_rate, reschedule_rate, dropout_rate, cfg
    )

    return TutorMetricsSnapshot(
        tutor_id=tutor_id,
        total_sessions_last_30d=total,
        first_sessions_last_30d=len(first_sessions),
        first_session_dropout_rate=dropout_rate,
        tutor_reschedule_rate=reschedule_rate,
        tutor_no_show_rate=no_show_rate,
        avg_student_rating_last_30d=avg_rating,
        ai_avg_quality_score=ai_avg_score,
        churn_risk_label=churn_label_for_score(churn_score),
        no_show_risk_label=calculate_no_show_risk_label(no_show_rate, reschedule_rate, avg_rating, cfg),
        high_rescheduler_flag=reschedule_rate > cfg.high_rescheduler_threshold,
        poor_first_session_flag=dropout_rate > cfg.poor_first_session_threshold,
        updated_at=now,
        churn_risk_score=churn_score,
    )
