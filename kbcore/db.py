# FILE: kbcore/db.py
"""
Database plumbing.

Components receive a session factory; nothing here holds a module-level
engine. main.py and the scripts build the engine from KB_DATABASE_URL.
"""

import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from kbcore.config import DATABASE_URL

Base = declarative_base()


def make_engine(database_url: str = DATABASE_URL, echo: bool = False) -> Engine:
    """
    Create an engine for the knowledge-base tables.

    In-memory SQLite gets a StaticPool so every session sees the same database.
    File-backed SQLite gets its parent directory created.
    """
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}  # Required for SQLite
        path = make_url(database_url).database
        if not path or path == ":memory:":
            kwargs["poolclass"] = StaticPool
        else:
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    return create_engine(database_url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(bind: Engine):
    """Create all tables. Call once at startup."""
    # Import models so Base.metadata knows about them
    from kbcore import models  # noqa: F401
    Base.metadata.create_all(bind=bind)
