"""Database engine factories."""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from spending_analyst.core.config import get_settings
from spending_analyst.core.logger import get_logger

LOGGER = get_logger(__name__)


def create_sync_engine(url: str | None = None, **kwargs) -> Engine:
    """Create a synchronous SQLAlchemy engine using configured defaults.

    Connections are checked before use; hosted Postgres poolers drop idle
    connections aggressively.
    """

    settings = get_settings()
    resolved_url = url or settings.database.sqlalchemy_url

    options = dict(kwargs)
    options.setdefault("echo", settings.sqlalchemy_echo)
    options.setdefault("pool_pre_ping", True)

    LOGGER.debug(
        "Creating SQLAlchemy engine",
        extra={"url": settings.database.masked_url, "options": options},
    )
    return create_engine(resolved_url, **options)


@lru_cache(maxsize=1)
def get_shared_engine() -> Engine:
    """Process-wide engine so every request shares one connection pool."""

    return create_sync_engine()
