"""Tutor risk metrics.

Pure computations over session and evaluation records:

- engine: per-tutor snapshot (rates, averages, risk labels and flags)
- first_sessions: platform first-session cohort summary
- trends: weekly rating trend for a tutor
"""

from tutor_insights.metrics.engine import (
    EvaluationRecord,
    InvalidMetricsConfigError,
    MetricsConfig,
    RiskLabel,
    SessionRecord,
    SessionStatus,
    TutorMetricsSnapshot,
    calculate_churn_risk_label,
    calculate_churn_risk_score,
    calculate_no_show_risk_label,
    compute_tutor_metrics,
)

__all__ = [
    "EvaluationRecord",
    "InvalidMetricsConfigError",
    "MetricsConfig",
    "RiskLabel",
    "SessionRecord",
    "SessionStatus",
    "TutorMetricsSnapshot",
    "calculate_churn_risk_label",
    "calculate_churn_risk_score",
    "calculate_no_show_risk_label",
    "compute_tutor_metrics",
]
