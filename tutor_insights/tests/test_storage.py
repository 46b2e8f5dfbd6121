"""Tests for DatabaseStorage reads and writes against a file-backed SQLite database."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, add_evaluation, add_session, add_tutor
from tutor_insights.metrics.engine import RiskLabel, TutorMetricsSnapshot


def _snapshot(tutor_id: str, **overrides) -> TutorMetricsSnapshot:
    values = dict(
        tutor_id=tutor_id,
        total_sessions_last_30d=4,
        first_sessions_last_30d=2,
        first_session_dropout_rate=0.5,
        tutor_reschedule_rate=0.0,
        tutor_no_show_rate=0.25,
        avg_student_rating_last_30d=4.0,
        ai_avg_quality_score=None,
        churn_risk_label=RiskLabel.HIGH,
        no_show_risk_label=RiskLabel.HIGH,
        high_rescheduler_flag=False,
        poor_first_session_flag=True,
        updated_at=NOW,
    )
    values.update(overrides)
    return TutorMetricsSnapshot(**values)


class TestSnapshotUpsert:
    def test_insert_then_replace_every_field(self, storage) -> None:
        add_tutor(storage, "t1")

        storage.upsert_tutor_metrics(_snapshot("t1"))
        storage.upsert_tutor_metrics(
            _snapshot(
                "t1",
                total_sessions_last_30d=9,
                avg_student_rating_last_30d=None,
                churn_risk_label=RiskLabel.LOW,
                poor_first_session_flag=False,
                updated_at=NOW + timedelta(hours=1),
            )
        )

        stored = storage.get_tutor_metrics("t1")
        assert stored["total_sessions_last_30d"] == 9
        assert stored["avg_student_rating_last_30d"] is None
        assert stored["churn_risk_label"] == "low"
        assert stored["poor_first_session_flag"] is False
        assert stored["updated_at"] == NOW + timedelta(hours=1)

    def test_unknown_tutor_has_no_metrics(self, storage) -> None:
        assert storage.get_tutor_metrics("missing") is None


class TestReads:
    def test_fetch_sessions_in_window_filters_by_tutor_and_window(self, storage) -> None:
        add_tutor(storage, "t1")
        add_tutor(storage, "t2")
        add_session(storage, "recent", "t1", days_ago=2, rating=4, first=True)
        add_session(storage, "old", "t1", days_ago=40)
        add_session(storage, "upcoming", "t1", days_ago=-1)
        add_session(storage, "other", "t2", days_ago=2)

        records = storage.fetch_sessions_in_window("t1", NOW - timedelta(days=30), NOW)

        assert [r.session_id for r in records] == ["recent"]
        record = records[0]
        assert record.is_first_session is True
        assert record.student_rating == 4
        assert record.scheduled_start_at == NOW - timedelta(days=2)

    def test_fetch_evaluations(self, storage) -> None:
        add_tutor(storage, "t1")
        add_session(storage, "s1", "t1")
        add_session(storage, "s2", "t1")
        add_evaluation(storage, "s1", 3)

        evaluations = storage.fetch_evaluations(["s1", "s2"])

        assert [(e.session_id, e.quality_score) for e in evaluations] == [("s1", 3)]
        assert storage.fetch_evaluations([]) == []

    def test_list_tutors_with_metrics_is_a_left_join(self, storage) -> None:
        add_tutor(storage, "t1", name="Ada", subjects=["Algebra", "Geometry"])
        add_tutor(storage, "t2", name="Grace")
        storage.upsert_tutor_metrics(_snapshot("t1"))

        rows = {row["tutor_id"]: row for row in storage.list_tutors_with_metrics()}

        assert rows["t1"]["churn_risk_label"] == "high"
        assert rows["t1"]["subjects"] == ["Algebra", "Geometry"]
        assert "churn_risk_label" not in rows["t2"]

    def test_recent_session_details_include_evaluation_and_transcript(self, storage) -> None:
        add_tutor(storage, "t1")
        add_session(storage, "s1", "t1", days_ago=1, transcript="Tutor: Hi\nStudent: Hello")
        add_session(storage, "s2", "t1", days_ago=3)
        add_evaluation(storage, "s1", 5)

        details = storage.fetch_recent_session_details("t1", NOW - timedelta(days=30))

        assert [d["session_id"] for d in details] == ["s1", "s2"]
        assert details[0]["evaluation"]["quality_score"] == 5
        assert details[0]["transcript"].startswith("Tutor: Hi")
        assert details[1]["evaluation"] is None
        assert details[1]["transcript"] is None

    def test_poor_first_session_tutors_need_two_first_sessions(self, storage) -> None:
        add_tutor(storage, "t1")
        add_tutor(storage, "t2")
        add_tutor(storage, "t3")
        storage.upsert_tutor_metrics(_snapshot("t1", first_session_dropout_rate=0.5))
        storage.upsert_tutor_metrics(_snapshot("t2", first_sessions_last_30d=1))
        storage.upsert_tutor_metrics(_snapshot("t3", poor_first_session_flag=False))

        rows = storage.list_poor_first_session_tutors()

        assert [row["tutor_id"] for row in rows] == ["t1"]


class TestEvaluations:
    def test_session_and_transcript_seeded_together(self, storage) -> None:
        add_tutor(storage, "t1")
        add_session(storage, "s1", "t1", transcript="Tutor: Ready?\nStudent: Yes")

        assert storage.get_session("s1")["tutor_id"] == "t1"
        assert storage.get_transcript("s1") == "Tutor: Ready?\nStudent: Yes"
        assert storage.get_transcript("missing") is None

    def test_pending_evaluations_need_a_transcript_and_no_evaluation(self, storage) -> None:
        add_tutor(storage, "t1")
        add_session(storage, "pending", "t1", days_ago=2, transcript="Tutor: ...", rating=4)
        add_session(storage, "done", "t1", days_ago=3, transcript="Tutor: ...")
        add_session(storage, "silent", "t1", days_ago=4)
        add_evaluation(storage, "done", 4)

        pending = storage.list_pending_evaluations(10)

        assert [p.session_id for p in pending] == ["pending"]
        assert pending[0].transcript_text == "Tutor: ..."
        assert pending[0].student_rating == 4

    def test_store_evaluation_and_score_counts(self, storage) -> None:
        add_tutor(storage, "t1")
        add_session(storage, "s1", "t1")
        add_session(storage, "s2", "t1")

        stored = storage.store_evaluation(
            "s1",
            quality_score=4,
            strengths=["Patient"],
            areas_for_improvement=["Check understanding"],
            risk_tags=["adaptive_teaching"],
            created_at=NOW,
        )
        add_evaluation(storage, "s2", 4)

        assert stored["quality_score"] == 4
        assert storage.get_evaluation("s1")["risk_tags"] == ["adaptive_teaching"]
        assert storage.quality_score_counts() == {1: 0, 2: 0, 3: 0, 4: 2, 5: 0}

    def test_duplicate_evaluation_is_rejected(self, storage) -> None:
        add_tutor(storage, "t1")
        add_session(storage, "s1", "t1")
        add_evaluation(storage, "s1", 3)

        with pytest.raises(Exception):
            storage.store_evaluation(
                "s1", quality_score=5, strengths=[], areas_for_improvement=[], risk_tags=[]
            )
