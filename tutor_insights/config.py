"""Configuration helpers for the Tutor Insights backend."""

from __future__ import annotations

import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from a .env file if present.
load_dotenv()


def _split_origins(value: str) -> List[str]:
    """Convert a comma-separated origin string into a clean list.

    Args:
        value (str): One or many origins separated by commas.
    Returns:
        List[str]: Normalized origin values with whitespace removed.
    """
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def _env_float(name: str, default: float) -> float:
    """Read a float from the environment, falling back to ``default`` when unset."""
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    """Read an integer from the environment, falling back to ``default`` when unset."""
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


DEFAULT_ALLOWED_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"

API_HOST = os.getenv("TI_API_HOST", "0.0.0.0")
API_PORT = _env_int("TI_API_PORT", 8600)
API_ALLOWED_ORIGINS = _split_origins(os.getenv("TI_API_ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS))

# OpenAI-compatible evaluation endpoint
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1").rstrip("/")
OPENAI_TIMEOUT_SECONDS = _env_float("OPENAI_TIMEOUT_SECONDS", 60.0)
EVALUATION_MODEL = os.getenv("TI_EVALUATION_MODEL", "gpt-4o").strip() or "gpt-4o"
EVALUATION_TEMPERATURE = _env_float("TI_EVALUATION_TEMPERATURE", 0.3)
EVALUATION_MAX_TOKENS = _env_int("TI_EVALUATION_MAX_TOKENS", 1000)
EVALUATION_MAX_RETRIES = _env_int("TI_EVALUATION_MAX_RETRIES", 3)

# Evaluation batch runner
EVALUATION_BATCH_SIZE = _env_int("TI_EVALUATION_BATCH_SIZE", 5)
EVALUATION_MAX_SESSIONS = _env_int("TI_EVALUATION_MAX_SESSIONS", 100)  # cost ceiling per run
EVALUATION_BATCH_PAUSE_SECONDS = _env_float("TI_EVALUATION_BATCH_PAUSE_SECONDS", 1.0)

# Analytics batch driver
ANALYTICS_MAX_WORKERS = _env_int("TI_ANALYTICS_MAX_WORKERS", 4)

# Tutor risk thresholds
METRIC_WINDOW_DAYS = _env_int("TI_METRIC_WINDOW_DAYS", 30)
HIGH_RESCHEDULER_THRESHOLD = _env_float("TI_HIGH_RESCHEDULER_THRESHOLD", 0.15)
NO_SHOW_HIGH_THRESHOLD = _env_float("TI_NO_SHOW_HIGH_THRESHOLD", 0.10)
NO_SHOW_MEDIUM_THRESHOLD = _env_float("TI_NO_SHOW_MEDIUM_THRESHOLD", 0.05)
POOR_FIRST_SESSION_THRESHOLD = _env_float("TI_POOR_FIRST_SESSION_THRESHOLD", 0.25)
CHURN_RISK_RATING_LOW_THRESHOLD = _env_float("TI_CHURN_RISK_RATING_LOW_THRESHOLD", 3.5)
CHURN_RISK_AI_SCORE_LOW_THRESHOLD = _env_float("TI_CHURN_RISK_AI_SCORE_LOW_THRESHOLD", 3.0)
