"""FastAPI application for the Tutor Insights backend."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from .config import API_ALLOWED_ORIGINS, API_HOST, API_PORT
from .db import init_database, session_scope
from .logging_config import configure_logging
from .routes import router

configure_logging()
LOGGER = logging.getLogger(__name__)
LOGGER.info("Creating Tutor Insights FastAPI application")

app = FastAPI(
    title="Tutor Insights API",
    version="1.0.0",
    description="Tutor risk metrics, first-session reporting and transcript evaluation.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=API_ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.on_event("startup")
def ensure_schema() -> None:
    """Create any missing tables before the first request is served."""
    LOGGER.info("Backend startup hook triggered, ensuring database schema")
    try:
        init_database()
    except Exception:  # pylint: disable=broad-except
        LOGGER.exception("Database schema initialisation failed during startup")
        raise
    LOGGER.info("Database schema ready")


@app.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    """Readiness probe: the API is up and the database answers a trivial query."""
    try:
        with session_scope() as session:
            session.execute(text("SELECT 1"))
    except Exception:  # pylint: disable=broad-except
        LOGGER.exception("Health check could not reach the database")
        raise HTTPException(status_code=503, detail="Database unavailable") from None
    return {"status": "ok", "database": "ok"}


def main(host: str = API_HOST, port: int = API_PORT, reload: bool = False) -> None:
    import uvicorn

    LOGGER.info("Launching Uvicorn server on %s:%s", host, port)
    uvicorn.run("tutor_insights.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    main(reload=True)
