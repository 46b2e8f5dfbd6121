"""First-session cohort reporting.

Summarises how students' first sessions went across the platform, using the
same dropout rule as the per-tutor dropout rate (churned, or rated 2 or lower).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .engine import SessionRecord, is_bad_first_session


@dataclass
class SubjectFirstSessionStats:
    subject: str
    total_first_sessions: int
    bad_first_sessions: int

    @property
    def dropout_rate(self) -> float:
        if self.total_first_sessions == 0:
            return 0.0
        return self.bad_first_sessions / self.total_first_sessions


@dataclass
class FirstSessionOverview:
    """Platform-wide first-session outcome over a window.

    Attributes:
        total_first_sessions: First sessions in the window.
        bad_first_sessions: Of those, the ones counted as dropouts.
        overall_dropout_rate: Dropout share as a percentage (0-100).
        avg_rating: Mean rating of rated first sessions rounded to one decimal,
            or ``None`` when none were rated.
        window_days: Length of the window the overview covers.
    """

    total_first_sessions: int
    bad_first_sessions: int
    overall_dropout_rate: float
    avg_rating: Optional[float]
    window_days: int


def summarize_first_sessions(
    sessions: Iterable[SessionRecord],
    *,
    window_days: int,
) -> tuple[FirstSessionOverview, List[SubjectFirstSessionStats]]:
    """Build the overview and per-subject breakdown for first sessions.

    Sessions that are not first sessions are ignored. The per-subject list is
    sorted by dropout rate, worst first; ties keep subject name order.
    """
    by_subject: Dict[str, SubjectFirstSessionStats] = defaultdict(
        lambda: SubjectFirstSessionStats(subject="", total_first_sessions=0, bad_first_sessions=0)
    )
    ratings: List[int] = []
    total = 0
    bad = 0

    for session in sessions:
        if not session.is_first_session:
            continue
        stats = by_subject[session.subject]
        stats.subject = session.subject
        stats.total_first_sessions += 1
        total += 1
        if is_bad_first_session(session):
            stats.bad_first_sessions += 1
            bad += 1
        if session.student_rating is not None:
            ratings.append(session.student_rating)

    avg_rating = round(sum(ratings) / len(ratings), 1) if ratings else None
    overview = FirstSessionOverview(
        total_first_sessions=total,
        bad_first_sessions=bad,
        overall_dropout_rate=(bad / total) * 100 if total else 0.0,
        avg_rating=avg_rating,
        window_days=window_days,
    )

    subjects = sorted(by_subject.values(), key=lambda item: item.subject)
    subjects.sort(key=lambda item: item.dropout_rate, reverse=True)
    return overview, subjects
