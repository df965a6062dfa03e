"""Opinionated SQLAlchemy session helpers."""
from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .engine import create_sync_engine, get_shared_engine


def get_sessionmaker(url: str | None = None, engine: Engine | None = None, **kwargs) -> sessionmaker:
    """Return a ``sessionmaker`` bound to the shared engine (or a custom one)."""

    if engine is None:
        engine = create_sync_engine(url, **kwargs) if (url or kwargs) else get_shared_engine()
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
