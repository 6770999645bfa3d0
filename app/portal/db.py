from __future__ import annotations

import logging
from contextlib import contextmanager
from collections.abc import Generator
from typing import Any

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def _engine_options(app: Flask) -> dict[str, Any]:
    options: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if app.config["DATABASE_URL"].startswith("postgres"):
        # connect_timeout bounds the startup check against an unreachable host.
        options.update(
            pool_size=5,
            max_overflow=10,
            pool_recycle=1800,
            pool_timeout=30,
            connect_args={"connect_timeout": app.config["DATABASE_CONNECT_TIMEOUT"]},
        )
    return options


def init_db(app: Flask) -> Engine:
    engine = create_engine(app.config["DATABASE_URL"], **_engine_options(app))
    if app.config.get("ENV") != "production":
        @event.listens_for(engine, "checkout")
        def _log_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("users/sessions store: connection checked out")

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine, autoflush=False, expire_on_commit=False, future=True
    )
    return engine


def check_connection(app: Flask) -> bool:
    """Run SELECT 1 once at startup. Failure is logged and the app keeps booting."""
    safe_url = make_url(app.config["DATABASE_URL"]).render_as_string(hide_password=True)
    try:
        with app.extensions["sqlalchemy_engine"].connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        app.logger.error("Failed to connect to database at (%s): %s", safe_url, e)
        return False
    app.logger.info("Database reachable at (%s)", safe_url)
    return True


def db_session(app: Flask | None = None) -> Session:
    """The ORM session for the current request, opened on first use."""
    s: Session | None = g.get("db_session")
    if s is None:
        s = (app or current_app).extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is None:
        return
    try:
        # Handlers commit explicitly; anything left over is discarded.
        s.close()
    except SQLAlchemyError as e:
        logger.warning("Error closing request database session: %s", e)


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """Commit-or-rollback session for the session store, scripts and tests."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
