"""Database layer utilities for the SQLAlchemy-backed remote store."""
from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings

Base = declarative_base()


def build_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares a single connection across threads."""

    kwargs: dict[str, Any] = {"future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.split("://", 1)[-1] in ("", "/"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(url, **kwargs)


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


# Use the Pydantic settings value – this will read from .env
engine: Engine = build_engine(get_settings().database_url)

SessionLocal = build_sessionmaker(engine)


def get_engine() -> Engine:
    """Return the configured SQLAlchemy engine."""
    return engine


def init_db(bind: Engine | None = None) -> None:
    """Initialise the remote-store schema by creating tables when missing."""
    # Import models to ensure they are registered on the metadata before create_all runs.
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "build_sessionmaker",
    "get_engine",
    "init_db",
]
