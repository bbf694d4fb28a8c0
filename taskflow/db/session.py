"""Database engine setup for TaskFlow."""

import logging

from sqlalchemy import event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from ..config import Settings

# Import models so they're registered with SQLModel.metadata
from ..models import Task, User  # noqa: F401

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _register_unicode_lower(dbapi_connection, connection_record):
    # SQLite's built-in lower() only folds ASCII.
    dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)


def get_engine(settings: Settings) -> Engine:
    """Create the database engine described by ``settings``.

    When the URL names no database (server engines), ``database_name`` is
    used. SQLite gets foreign key enforcement, a Unicode-aware ``lower()``
    and the request timeout as its default busy timeout, which each store
    operation narrows to the time it has left. An in-memory SQLite URL shares
    one connection so every session sees the same data.
    """
    url = make_url(settings.database_url)
    kwargs: dict = {"echo": settings.echo}

    if url.get_backend_name() == "sqlite":
        connect_args: dict = {"check_same_thread": False}
        if settings.request_timeout is not None:
            connect_args["timeout"] = settings.request_timeout
        kwargs["connect_args"] = connect_args
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        if not url.database:
            url = url.set(database=settings.database_name)
        kwargs["pool_pre_ping"] = True

    engine = create_engine(url, **kwargs)
    if url.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        event.listen(engine, "connect", _register_unicode_lower)
    logger.info(f"Database engine ready: {url.render_as_string(hide_password=True)}")
    return engine


def create_db_and_tables(engine: Engine) -> None:
    """Create all tables and their indexes if they do not exist."""
    SQLModel.metadata.create_all(engine)
