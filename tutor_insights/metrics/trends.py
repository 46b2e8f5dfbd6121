"""Weekly rating trend for a tutor's recent sessions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List

from .engine import SessionRecord


@dataclass
class WeeklyRating:
    week: str
    avg_rating: float
    count: int


def weekly_rating_trend(
    sessions: Iterable[SessionRecord],
    now: datetime,
    weeks: int = 4,
) -> List[WeeklyRating]:
    """Average rated sessions into consecutive 7-day buckets ending at ``now``.

    Buckets are returned oldest first and labelled "Week 1".."Week N". A bucket
    with no rated sessions reports ``avg_rating=0.0`` and ``count=0``.
    """
    rated = [s for s in sessions if s.student_rating is not None]
    trend: List[WeeklyRating] = []

    for offset in range(weeks - 1, -1, -1):
        week_start = now - timedelta(days=(offset + 1) * 7)
        week_end = now - timedelta(days=offset * 7)
        bucket = [s.student_rating for s in rated if week_start <= s.scheduled_start_at < week_end]
        avg = sum(bucket) / len(bucket) if bucket else 0.0
        trend.append(
            WeeklyRating(
                week=f"Week {weeks - offset}",
                avg_rating=round(avg, 1),
                count=len(bucket),
            )
        )

    return trend
