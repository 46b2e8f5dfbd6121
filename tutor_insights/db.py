"""Database engine and session management for Tutor Insights."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

# TI_DB_URL / TI_SQLITE_PATH may live in a local .env file.
load_dotenv()

LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative root shared by every table in ``db_models``."""


def _build_sqlite_url() -> str:
    """SQLite URL for ``TI_SQLITE_PATH``; relative paths resolve from the project root."""
    sqlite_path_env = os.getenv("TI_SQLITE_PATH", "data/tutor_insights.db")
    if sqlite_path_env == ":memory:":
        return "sqlite:///:memory:"

    project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    sqlite_path = os.path.expanduser(sqlite_path_env)
    if not os.path.isabs(sqlite_path):
        sqlite_path = os.path.normpath(os.path.join(project_root, sqlite_path))

    directory = os.path.dirname(sqlite_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return f"sqlite:///{sqlite_path}"


def _build_database_url() -> str:
    """Resolve the database URL, preferring an explicit ``TI_DB_URL``."""
    url = os.getenv("TI_DB_URL", "").strip()
    if url:
        return url
    return _build_sqlite_url()


def _enable_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str) -> Engine:
    """Create an engine for ``url`` with the pool settings used across the app."""
    engine_kwargs = {
        "future": True,
        "pool_pre_ping": True,
    }
    if url.startswith("sqlite"):
        # Analytics fans out across worker threads; each one checks out its own connection.
        engine_kwargs["connect_args"] = {"check_same_thread": False}

    created = create_engine(url, **engine_kwargs)
    if url.startswith("sqlite"):
        event.listen(created, "connect", _enable_sqlite_pragmas)
    return created


def create_session_factory(bind: Engine) -> sessionmaker:
    """Return a session factory bound to ``bind``."""
    return sessionmaker(
        bind=bind,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
        future=True,
    )


DATABASE_URL = _build_database_url()
engine = create_db_engine(DATABASE_URL)
SessionLocal = create_session_factory(engine)


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """Yield a session that commits on success and rolls back on any error."""
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(bind: Optional[Engine] = None) -> None:
    """Create missing tables on ``bind`` (default: the module engine). Existing tables are left alone."""
    # db_models imports Base from here.
    from . import db_models  # noqa: F401  # pylint: disable=unused-import

    target = bind or engine
    Base.metadata.create_all(bind=target)
    LOGGER.debug("Database schema ensured on %s", target.url.render_as_string(hide_password=True))
