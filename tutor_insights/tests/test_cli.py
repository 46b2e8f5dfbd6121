"""Tests for the command line entry points."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from tutor_insights import cli
from tutor_insights.analytics import AnalyticsRunError, AnalyticsRunSummary
from tutor_insights.evaluations import EvaluationRunSummary
from tutor_insights.evaluator import SessionEvaluator
from tutor_insights.providers.openai import OpenAIProvider

from conftest import NOW


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level=None: None)


def test_analytics_success(monkeypatch) -> None:
    run = MagicMock(return_value=AnalyticsRunSummary(started_at=NOW, window_days=14))
    monkeypatch.setattr("tutor_insights.analytics.run_analytics", run)
    monkeypatch.setattr("tutor_insights.storage.get_storage", lambda: "storage")

    assert cli.main(["analytics", "--workers", "2", "--window-days", "14"]) == 0

    args, kwargs = run.call_args
    assert args[0] == "storage"
    assert args[1].window_days == 14
    assert kwargs == {"max_workers": 2}


def test_analytics_roster_failure_exits_non_zero(monkeypatch) -> None:
    monkeypatch.setattr(
        "tutor_insights.analytics.run_analytics",
        MagicMock(side_effect=AnalyticsRunError("Unable to load the tutor roster")),
    )
    monkeypatch.setattr("tutor_insights.storage.get_storage", lambda: "storage")

    assert cli.main(["analytics"]) == 1


def test_analytics_invalid_window_exits_non_zero() -> None:
    assert cli.main(["analytics", "--window-days", "0"]) == 1


def test_evaluate_requires_an_available_provider(monkeypatch) -> None:
    monkeypatch.setattr("tutor_insights.config.OPENAI_API_KEY", "")
    run = MagicMock()
    monkeypatch.setattr("tutor_insights.evaluations.run_evaluations", run)
    monkeypatch.setattr(
        "tutor_insights.evaluator.get_session_evaluator",
        lambda: SessionEvaluator(OpenAIProvider(session=MagicMock())),
    )

    assert cli.main(["evaluate"]) == 1
    run.assert_not_called()


def test_evaluate_runs_batch(monkeypatch) -> None:
    run = MagicMock(return_value=EvaluationRunSummary(found=1, evaluated=1))
    evaluator = MagicMock()
    evaluator.provider.is_available.return_value = True
    monkeypatch.setattr("tutor_insights.evaluations.run_evaluations", run)
    monkeypatch.setattr("tutor_insights.storage.get_storage", lambda: "storage")
    monkeypatch.setattr("tutor_insights.evaluator.get_session_evaluator", lambda: evaluator)

    assert cli.main(["evaluate", "--batch-size", "3", "--limit", "10"]) == 0
    run.assert_called_once_with("storage", evaluator, batch_size=3, max_evaluations=10)


def test_unexpected_errors_exit_non_zero(monkeypatch) -> None:
    monkeypatch.setattr("tutor_insights.storage.get_storage", MagicMock(side_effect=RuntimeError("disk full")))

    assert cli.main(["analytics"]) == 1


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])
