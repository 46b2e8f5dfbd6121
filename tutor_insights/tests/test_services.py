"""Tests for DashboardService against a seeded SQLite database."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from conftest import NOW, add_evaluation, add_session, add_tutor
from tutor_insights.analytics import run_analytics
from tutor_insights.evaluator import EvaluationResponse, EvaluationResult, SessionEvaluator, SessionMetadata
from tutor_insights.metrics.engine import MetricsConfig
from tutor_insights.providers.base import Completion
from tutor_insights.services import (
    DashboardService,
    EvaluationFailedError,
    SessionNotFoundError,
    TranscriptMissingError,
    TutorNotFoundError,
)


@pytest.fixture
def seeded(storage):
    add_tutor(storage, "t-high", name="Hal", subjects=["Algebra", "Geometry"])
    add_tutor(storage, "t-low", name="ada", subjects=["Physics"])
    add_tutor(storage, "t-new", name="Zed", subjects=["Chemistry"])

    for index in range(4):
        add_session(storage, f"h{index}", "t-high", status="no_show", days_ago=index + 1, student_id="sh")
    add_session(storage, "h-first", "t-high", first=True, churned=True, rating=2, days_ago=2, student_id="sf1")
    add_session(storage, "h-first2", "t-high", first=True, rating=1, days_ago=9, subject="Geometry", student_id="sf2")
    for index in range(5):
        add_session(
            storage,
            f"l{index}",
            "t-low",
            rating=5,
            days_ago=index + 1,
            subject="Physics",
            student_id="sl",
            transcript="Tutor: Newton" if index == 0 else None,
        )
    add_session(storage, "l-first", "t-low", first=True, rating=5, days_ago=3, subject="Physics", student_id="sf3")
    add_evaluation(storage, "l1", 5)

    run_analytics(storage, MetricsConfig(), now=NOW, max_workers=1)
    return storage


def _service(storage, evaluator=None) -> DashboardService:
    return DashboardService(storage, evaluator or MagicMock(), clock=lambda: NOW)


class TestListTutors:
    def test_default_sort_puts_high_churn_first_and_unscored_last(self, seeded) -> None:
        result = _service(seeded).list_tutors()

        assert [t["tutor_id"] for t in result["tutors"]] == ["t-high", "t-low", "t-new"]
        assert result["tutors"][0]["metrics"]["churn_risk_label"] == "high"
        assert result["tutors"][2]["metrics"] is None
        assert result["pagination"] == {"total": 3, "limit": 50, "offset": 0, "has_more": False}

    def test_subject_filter_is_case_insensitive_substring(self, seeded) -> None:
        result = _service(seeded).list_tutors(subject="GEO")

        assert [t["tutor_id"] for t in result["tutors"]] == ["t-high"]

    def test_risk_level_filter(self, seeded) -> None:
        result = _service(seeded).list_tutors(risk_level="low")

        assert [t["tutor_id"] for t in result["tutors"]] == ["t-low"]

    def test_name_sort_and_pagination(self, seeded) -> None:
        result = _service(seeded).list_tutors(sort_by="name", order="asc", limit=2, offset=1)

        assert [t["name"] for t in result["tutors"]] == ["Hal", "Zed"]
        assert result["pagination"]["has_more"] is False
        assert result["pagination"]["total"] == 3

    def test_unknown_sort_field(self, seeded) -> None:
        with pytest.raises(ValueError):
            _service(seeded).list_tutors(sort_by="salary")


class TestTutorDetail:
    def test_detail_contents(self, seeded) -> None:
        detail = _service(seeded).get_tutor_detail("t-low")

        assert detail["tutor"]["name"] == "ada"
        assert detail["metrics"]["churn_risk_label"] == "low"
        assert detail["sessions"][0]["session_id"] == "l0"
        assert detail["sessions"][0]["transcript"] == "Tutor: Newton"
        assert detail["stats"] == {
            "total_sessions": 6,
            "completed_sessions": 6,
            "first_sessions": 1,
            "evaluated_sessions": 1,
        }
        assert [p["count"] for p in detail["rating_trend"]] == [0, 0, 0, 6]
        assert detail["rating_trend"][3]["avg_rating"] == 5.0

    def test_unknown_tutor(self, seeded) -> None:
        with pytest.raises(TutorNotFoundError):
            _service(seeded).get_tutor_detail("ghost")


class TestFirstSessions:
    def test_overview_by_subject_and_flagged_tutors(self, seeded) -> None:
        result = _service(seeded).get_first_session_overview()

        overview = result["overview"]
        assert overview["total_first_sessions"] == 3
        assert overview["bad_first_sessions"] == 2
        assert overview["overall_dropout_rate"] == pytest.approx(200 / 3)
        assert overview["avg_rating"] == pytest.approx(2.7)
        assert overview["window"] == "Last 30 days"
        assert [s["subject"] for s in result["by_subject"]] == ["Algebra", "Geometry", "Physics"]
        assert [t["tutor_id"] for t in result["poor_performing_tutors"]] == ["t-high"]

    def test_subject_narrows_breakdown_only(self, seeded) -> None:
        result = _service(seeded).get_first_session_overview(days=7, subject="Physics")

        assert result["overview"]["total_first_sessions"] == 2
        assert result["overview"]["window"] == "Last 7 days"
        assert [s["subject"] for s in result["by_subject"]] == ["Physics"]


class TestEvaluateSession:
    def test_stored_evaluation_is_returned_without_calling_the_provider(self, seeded) -> None:
        evaluator = MagicMock()

        result = _service(seeded, evaluator).evaluate_session("l1")

        assert result["cached"] is True
        assert result["evaluation"]["quality_score"] == 5
        evaluator.evaluate_session.assert_not_called()

    def test_new_evaluation_is_stored(self, seeded) -> None:
        evaluator = MagicMock()
        evaluator.evaluate_session.return_value = EvaluationResponse(
            success=True,
            evaluation=EvaluationResult(quality_score=3, strengths=["Warm"], risk_tags=["rushed_pacing"]),
            attempts=1,
        )

        result = _service(seeded, evaluator).evaluate_session("l0")

        assert result["cached"] is False
        assert result["evaluation"]["risk_tags"] == ["rushed_pacing"]
        assert seeded.get_evaluation("l0")["quality_score"] == 3
        metadata, transcript = evaluator.evaluate_session.call_args.args
        assert metadata.subject == "Physics"
        assert transcript == "Tutor: Newton"

    def test_unknown_session(self, seeded) -> None:
        with pytest.raises(SessionNotFoundError):
            _service(seeded).evaluate_session("nope")

    def test_session_without_transcript(self, seeded) -> None:
        with pytest.raises(TranscriptMissingError):
            _service(seeded).evaluate_session("l2")

    def test_provider_failure(self, seeded) -> None:
        evaluator = MagicMock()
        evaluator.evaluate_session.return_value = EvaluationResponse(success=False, error="timeout", attempts=3)

        with pytest.raises(EvaluationFailedError, match="timeout"):
            _service(seeded, evaluator).evaluate_session("l0")
        assert seeded.get_evaluation("l0") is None

    def test_unstored_cached_result_is_evaluated_again(self, seeded) -> None:
        provider = MagicMock()
        provider.supports_json_mode.return_value = True
        provider.complete.side_effect = [
            Completion(content=json.dumps({"quality_score": 1}), model="gpt-4o"),
            Completion(content=json.dumps({"quality_score": 4}), model="gpt-4o"),
        ]
        evaluator = SessionEvaluator(provider, sleep=lambda _: None)
        metadata = SessionMetadata(
            session_id="l0",
            subject="Physics",
            is_first_session=False,
            student_rating=5,
            student_feedback=None,
            status="completed",
            duration_minutes=60,
        )
        evaluator.evaluate_session(metadata, "Tutor: Newton")

        result = _service(seeded, evaluator).evaluate_session("l0")

        assert result["evaluation"]["quality_score"] == 4
        assert provider.complete.call_count == 2
