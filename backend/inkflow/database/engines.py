"""Database engine factory."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from inkflow.core.config import settings

logger = logging.getLogger(__name__)


def _is_sqlite(db_url: str) -> bool:
    return db_url.startswith("sqlite")


def _add_pool_events(engine: Engine, pool_name: str) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        logger.info("[%s] Database connection established", pool_name)
        if engine.dialect.name == "sqlite":
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @event.listens_for(engine, "checkout")
    def _on_checkout(
        _dbapi_connection: Any, _connection_record: Any, _connection_proxy: Any
    ) -> None:
        logger.debug("[%s] Connection checked out from pool", pool_name)

    @event.listens_for(engine, "checkin")
    def _on_checkin(_dbapi_connection: Any, _connection_record: Any) -> None:
        logger.debug("[%s] Connection returned to pool", pool_name)

    @event.listens_for(engine, "invalidate")
    def _on_invalidate(_dbapi_connection: Any, _connection_record: Any, exception: Any) -> None:
        logger.warning(
            "[%s] Connection invalidated",
            pool_name,
            extra={
                "event": "db_connection_invalidated",
                "exception": str(exception) if exception else "unknown",
            },
        )


def build_engine(db_url: str | None = None, *, pool_name: str = "API") -> Engine:
    """
    Create an engine for the given URL.

    SQLite URLs get a single shared connection for in-memory databases and
    ``check_same_thread`` disabled so the TestClient's worker thread can use it.
    """
    url = db_url or settings.database_url
    if _is_sqlite(url):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, future=True, **kwargs)
    else:
        engine = create_engine(
            url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_pre_ping=True,
            pool_use_lifo=True,
            future=True,
        )
    _add_pool_events(engine, pool_name)
    return engine
