"""
Engine / session factory.

SQLite gets a generous busy timeout so concurrent writers queue on the
database lock instead of failing fast.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from transitcare.db.base import Base


def make_engine(url: str, echo: bool = False) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, echo=echo, connect_args=connect_args, future=True)


def make_sessionmaker(url: str, create_tables: bool = True) -> sessionmaker:
    engine = make_engine(url)
    if create_tables:
        # Import registers the tables on Base.metadata
        from transitcare.db import models  # noqa: F401
        Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
