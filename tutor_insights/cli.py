#!/usr/bin/env python3
"""Command line entry points: batch analytics, batch evaluation and the API server."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from . import config
from .logging_config import configure_logging

LOGGER = logging.getLogger(__name__)


def _run_analytics(args: argparse.Namespace) -> int:
    from .analytics import AnalyticsRunError, log_analytics_summary, run_analytics
    from .metrics.engine import InvalidMetricsConfigError, MetricsConfig
    from .storage import get_storage

    try:
        overrides = {"window_days": args.window_days} if args.window_days is not None else {}
        thresholds = MetricsConfig.from_env(**overrides)
    except InvalidMetricsConfigError as exc:
        LOGGER.error("Invalid metrics configuration: %s", exc)
        return 1

    try:
        summary = run_analytics(get_storage(), thresholds, max_workers=args.workers)
    except AnalyticsRunError as exc:
        LOGGER.error("Analytics run aborted: %s", exc)
        return 1

    log_analytics_summary(summary)
    return 0


def _run_evaluations(args: argparse.Namespace) -> int:
    from .evaluations import log_evaluation_summary, run_evaluations
    from .evaluator import get_session_evaluator
    from .storage import get_storage

    evaluator = get_session_evaluator()
    if not evaluator.provider.is_available():
        LOGGER.error(
            "Evaluation provider %s is not configured (set OPENAI_API_KEY)", evaluator.provider.name
        )
        return 1

    summary = run_evaluations(
        get_storage(),
        evaluator,
        batch_size=args.batch_size,
        max_evaluations=args.limit,
    )
    log_evaluation_summary(summary)
    return 0


def _serve(args: argparse.Namespace) -> int:
    from .app import main as serve_app

    serve_app(host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tutor-insights", description=__doc__)
    parser.add_argument("--log-level", default=None, help="Override TI_LOG_LEVEL (e.g. DEBUG)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analytics = subparsers.add_parser("analytics", help="Recompute every tutor's risk metrics snapshot")
    analytics.add_argument("--workers", type=int, default=None, help="Tutors scored concurrently")
    analytics.add_argument("--window-days", type=int, default=None, help="Trailing window length in days")
    analytics.set_defaults(handler=_run_analytics)

    evaluate = subparsers.add_parser("evaluate", help="Evaluate transcripts that have no AI evaluation")
    evaluate.add_argument("--batch-size", type=int, default=None, help="Sessions evaluated concurrently")
    evaluate.add_argument("--limit", type=int, default=None, help="Maximum sessions evaluated this run")
    evaluate.set_defaults(handler=_run_evaluations)

    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default=config.API_HOST)
    serve.add_argument("--port", type=int, default=config.API_PORT)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(handler=_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        return args.handler(args)
    except KeyboardInterrupt:
        LOGGER.warning("Interrupted")
        return 1
    except Exception:  # pylint: disable=broad-except
        LOGGER.exception("Command %s failed", args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
