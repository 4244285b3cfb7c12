"""SQLAlchemy engine and session factory.

The application uses a single relational table, so the database layer is
deliberately small: :func:`create_session_factory` builds an engine for the
configured URL, creates the schema, and returns a ``sessionmaker`` that the
repository opens one short-lived session from per operation.
"""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_db_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine for *database_url*.

    SQLite connections are shared with FastAPI's threadpool, so the
    same-thread check is disabled for SQLite URLs.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
        pool_pre_ping=True,
    )


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    # Import for the side effect of registering the models on Base.metadata.
    from iconforge.core import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database schema ready at {engine.url.render_as_string(hide_password=True)}")


def create_session_factory(database_url: str, *, echo: bool = False) -> sessionmaker:
    """Build an engine, ensure the schema exists, and return a session factory."""
    engine = create_db_engine(database_url, echo=echo)
    init_db(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
